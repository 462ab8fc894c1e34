"""
Data models.

- canonical: provider-independent dataclasses used by the ingestion stages
- tables: SQLAlchemy tables the canonical records are stored in
"""
