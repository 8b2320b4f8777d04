"""
Ingestion pipeline: normalization, extraction and the idempotent upsert.
"""

__all__ = ["extraction", "ingest", "normalization"]
