# app/infrastructure/__init__.py
"""
Infrastructure Module
Contains adapters for storage backends and infrastructure concerns.
"""

from app.infrastructure.record_store import (
    RecordStore,
    SQLRecordStore,
    RedisRecordStore,
    get_record_store,
)

__all__ = [
    "RecordStore",
    "SQLRecordStore",
    "RedisRecordStore",
    "get_record_store",
]
