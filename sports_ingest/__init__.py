"""
Sports data ingestion service.

Pulls leagues, teams and games from API-Sports and TheSportsDB, stores them
as canonical records and streams updates to subscribers.
"""
