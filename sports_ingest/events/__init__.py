"""
Domain events.

Writes register their events on a unit of work; the dispatcher publishes them
on the configured bus (in-memory or Redis Streams) once the writes commit.
"""
