"""
Ingestion services.

This module organizes services into:
- core: Provider protection shared by every client (rate governor, circuit breakers)
- clients: HTTP clients for API-Sports and TheSportsDB
- transformers: Provider payload -> canonical record mapping
- sync: Dedup, batch upsert, markets and the ETL orchestrator
"""
