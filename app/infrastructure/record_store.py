# app/infrastructure/record_store.py
"""
Record Store for the Traveler Context System
Durable, per-user keyed storage for the four record families.

Contract shared by every backend:
- read() returns None for an absent record, never raises for absence
- write() publishes a whole record atomically; readers see old or new, never half
- erase() drops a user from every family, all or nothing
"""

import json
import logging
from datetime import date, datetime
from enum import Enum
from typing import Any, Dict, List, Optional, Type, TypeVar, Union

from pydantic import BaseModel, ValidationError as PydanticValidationError
from redis import asyncio as aioredis
from redis.exceptions import RedisError
from sqlalchemy import delete, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncEngine

from app.core.config import settings
from app.db.database import build_engine, build_session_factory, create_db_and_tables
from app.db.redis_client import create_redis_client
from app.models.models import RecordFamily, UserRecord
from app.user_context.models import utcnow
from services.exceptions import CorruptRecord, PartialErasure, StorageUnavailable

logger = logging.getLogger(__name__)

M = TypeVar("M", bound=BaseModel)
FamilyLike = Union[RecordFamily, str]


def _family_value(family: FamilyLike) -> str:
    return RecordFamily(family).value


def _json_default(obj: Any) -> Any:
    if isinstance(obj, (datetime, date)):
        return obj.isoformat()
    if isinstance(obj, Enum):
        return obj.value
    if isinstance(obj, BaseModel):
        return obj.model_dump(mode="json")
    raise TypeError(f"Object of type {type(obj).__name__} is not JSON serializable")


class RecordStore:
    """
    Abstract interface for record persistence.
    Allows easy swapping of storage backends.
    """

    async def initialize(self) -> None:
        """Prepare the backend (create tables, check connectivity)"""
        return None

    async def read(self, family: FamilyLike, user_id: str) -> Optional[Dict[str, Any]]:
        """Get the record for family/user, or None"""
        raise NotImplementedError

    async def write(self, family: FamilyLike, user_id: str, record: Dict[str, Any]) -> None:
        """Atomically replace the record for family/user"""
        raise NotImplementedError

    async def erase(self, user_id: str) -> List[str]:
        """Remove the user from every family; returns the families that held data"""
        raise NotImplementedError

    async def close(self) -> None:
        return None

    # ============================================================
    # SHARED HELPERS
    # ============================================================

    async def read_model(self, family: FamilyLike, user_id: str, model: Type[M]) -> Optional[M]:
        """
        Read and validate a record into a Pydantic model.

        Raises:
            CorruptRecord: stored data exists but does not fit the model
        """
        data = await self.read(family, user_id)
        if data is None:
            return None
        try:
            return model.model_validate(data)
        except PydanticValidationError as e:
            raise CorruptRecord(_family_value(family), user_id, str(e)) from e

    async def write_model(self, family: FamilyLike, user_id: str, record: BaseModel) -> None:
        await self.write(family, user_id, record.model_dump(mode="json"))

    @staticmethod
    def _encode(record: Dict[str, Any]) -> str:
        return json.dumps(record, default=_json_default)

    @staticmethod
    def _decode(family: FamilyLike, user_id: str, payload: str) -> Dict[str, Any]:
        try:
            data = json.loads(payload)
        except (json.JSONDecodeError, TypeError) as e:
            logger.error(f"Invalid JSON in stored {_family_value(family)} record for {user_id}: {e}")
            raise CorruptRecord(_family_value(family), user_id, f"invalid JSON: {e}") from e

        if not isinstance(data, dict):
            raise CorruptRecord(_family_value(family), user_id, "record is not a JSON object")
        return data


class SQLRecordStore(RecordStore):
    """
    SQLAlchemy-backed record store (SQLite via aiosqlite, MySQL via aiomysql).
    One row per (family, user_id); every write is a single transaction.
    """

    def __init__(self, engine: AsyncEngine, owns_engine: bool = True):
        self.engine = engine
        self._owns_engine = owns_engine
        self._session_factory = build_session_factory(engine)
        logger.debug("✓ SQLRecordStore initialized")

    @classmethod
    def from_url(cls, database_url: Optional[str] = None) -> "SQLRecordStore":
        return cls(build_engine(database_url))

    async def initialize(self) -> None:
        try:
            await create_db_and_tables(self.engine)
        except SQLAlchemyError as e:
            raise StorageUnavailable(f"Could not create record tables: {e}") from e

    async def read(self, family: FamilyLike, user_id: str) -> Optional[Dict[str, Any]]:
        family_value = _family_value(family)
        try:
            async with self._session_factory() as session:
                result = await session.execute(
                    select(UserRecord.payload).where(
                        UserRecord.family == family_value,
                        UserRecord.user_id == user_id,
                    )
                )
                payload = result.scalar_one_or_none()
        except SQLAlchemyError as e:
            logger.error(f"[SQLRecordStore] Read failed for {family_value}/{user_id}: {e}")
            raise StorageUnavailable(f"Read failed for {family_value}/{user_id}") from e

        if payload is None:
            logger.debug(f"Record MISS: {family_value}/{user_id}")
            return None

        logger.debug(f"Record HIT: {family_value}/{user_id}")
        return self._decode(family_value, user_id, payload)

    async def write(self, family: FamilyLike, user_id: str, record: Dict[str, Any]) -> None:
        family_value = _family_value(family)
        payload = self._encode(record)

        try:
            async with self._session_factory() as session:
                async with session.begin():
                    result = await session.execute(
                        select(UserRecord).where(
                            UserRecord.family == family_value,
                            UserRecord.user_id == user_id,
                        )
                    )
                    existing = result.scalar_one_or_none()

                    if existing:
                        existing.payload = payload
                        existing.updated_at = utcnow()
                    else:
                        session.add(UserRecord(family=family_value, user_id=user_id, payload=payload))
        except SQLAlchemyError as e:
            logger.error(
                f"[SQLRecordStore] Write failed for {family_value}/{user_id}: {e}",
                exc_info=True,
            )
            raise StorageUnavailable(f"Write failed for {family_value}/{user_id}") from e

        logger.debug(f"Record SET: {family_value}/{user_id}")

    async def erase(self, user_id: str) -> List[str]:
        try:
            async with self._session_factory() as session:
                async with session.begin():
                    result = await session.execute(
                        select(UserRecord.family).where(UserRecord.user_id == user_id)
                    )
                    families = sorted(result.scalars().all())
                    await session.execute(delete(UserRecord).where(UserRecord.user_id == user_id))
        except SQLAlchemyError as e:
            # The transaction rolled back; nothing is known to be gone
            logger.error(f"[SQLRecordStore] Erase failed for {user_id}: {e}", exc_info=True)
            raise PartialErasure(user_id, [f.value for f in RecordFamily]) from e

        logger.info(f"Erased {len(families)} record families for user {user_id}")
        return families

    async def close(self) -> None:
        if self._owns_engine:
            await self.engine.dispose()
            logger.info("✅ Record store engine disposed")


class RedisRecordStore(RecordStore):
    """
    Redis-backed record store.
    SET publishes a record atomically; erase runs in one MULTI/EXEC block.
    Durability follows the server's persistence settings (AOF recommended).
    """

    def __init__(self, client: aioredis.Redis, key_prefix: Optional[str] = None, owns_client: bool = True):
        self.redis = client
        self.key_prefix = key_prefix or settings.RECORD_KEY_PREFIX
        self._owns_client = owns_client
        logger.debug("✓ RedisRecordStore initialized")

    @classmethod
    def from_url(cls, redis_url: Optional[str] = None) -> "RedisRecordStore":
        return cls(create_redis_client(redis_url))

    def _key(self, family: FamilyLike, user_id: str) -> str:
        return f"{self.key_prefix}:{_family_value(family)}:{user_id}"

    async def initialize(self) -> None:
        try:
            await self.redis.ping()
        except RedisError as e:
            raise StorageUnavailable(f"Redis unreachable: {e}") from e

    async def read(self, family: FamilyLike, user_id: str) -> Optional[Dict[str, Any]]:
        key = self._key(family, user_id)
        try:
            payload = await self.redis.get(key)
        except RedisError as e:
            logger.error(f"[RedisRecordStore] Error getting key '{key}': {e}")
            raise StorageUnavailable(f"Read failed for {key}") from e

        if payload is None:
            logger.debug(f"Record MISS: {key}")
            return None

        logger.debug(f"Record HIT: {key}")
        return self._decode(family, user_id, payload)

    async def write(self, family: FamilyLike, user_id: str, record: Dict[str, Any]) -> None:
        key = self._key(family, user_id)
        payload = self._encode(record)
        try:
            await self.redis.set(key, payload)
        except RedisError as e:
            logger.error(f"[RedisRecordStore] Error setting key '{key}': {e}", exc_info=True)
            raise StorageUnavailable(f"Write failed for {key}") from e

        logger.debug(f"Record SET: {key}")

    async def erase(self, user_id: str) -> List[str]:
        families = [f.value for f in RecordFamily]
        try:
            async with self.redis.pipeline(transaction=True) as pipe:
                for family in families:
                    pipe.delete(self._key(family, user_id))
                results = await pipe.execute()
        except RedisError as e:
            logger.error(f"[RedisRecordStore] Erase failed for {user_id}: {e}", exc_info=True)
            raise PartialErasure(user_id, families) from e

        erased = [family for family, deleted in zip(families, results) if deleted]
        logger.info(f"Erased {len(erased)} record families for user {user_id}")
        return erased

    async def close(self) -> None:
        if self._owns_client:
            await self.redis.aclose()
            logger.info("✅ Redis record store connection closed")


# ============================================================
# FACTORY FUNCTION
# ============================================================

def get_record_store(backend: Optional[str] = None) -> RecordStore:
    """
    Build the configured record store backend.

    Args:
        backend: "sql" or "redis"; defaults to settings.RECORD_STORE_BACKEND
    """
    backend = backend or settings.RECORD_STORE_BACKEND
    if backend == "redis":
        return RedisRecordStore.from_url()
    if backend == "sql":
        return SQLRecordStore.from_url()
    raise ValueError(f"Unknown record store backend: {backend}")


__all__ = [
    'RecordStore',
    'SQLRecordStore',
    'RedisRecordStore',
    'get_record_store',
]
