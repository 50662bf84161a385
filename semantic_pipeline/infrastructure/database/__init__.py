"""Database infrastructure module."""

from semantic_pipeline.infrastructure.database.connection import FetchResult, create_db_engine, fetch_rows

__all__ = ["FetchResult", "create_db_engine", "fetch_rows"]
