"""WebSocket fan-out of sports and market updates."""
