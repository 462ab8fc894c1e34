"""
Sports Data Sync Service

Provides the ingestion pipeline between the providers and storage.

Key components:
- Store: Table-scoped reads and writes over a SQLAlchemy session
- Dedup: Collapse records describing the same league, team or event
- Upsert: Batch writes with status guards and domain events
- Orchestrator: Coordinate sync cycles and monitoring
"""
