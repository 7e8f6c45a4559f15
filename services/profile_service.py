"""
ProfileService

CRUD over TravelerProfile records.

Responsibilities:
- Create a profile once per user_id
- Shallow-merge partial updates, gated by explicit consent for personal data
- Keep derived fields (frequent routes, learned airlines, typical spend) out of storage

Update semantics are a shallow merge: a top-level key in the update replaces
the stored value wholesale, nested blocks included.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, Optional

from pydantic import ValidationError as PydanticValidationError

from app.db.locks import UserLockManager
from app.infrastructure.record_store import RecordStore
from app.models.models import RecordFamily
from app.user_context.models import TravelerProfile, utcnow
from services.exceptions import (
    AlreadyExists,
    ConsentRequired,
    CorruptRecord,
    NotFound,
    ValidationError,
)

logger = logging.getLogger(__name__)


class ProfileService:
    """
    Facade for working with traveler profiles.

    The record store and lock manager are injected; this class keeps no state
    of its own between calls.
    """

    # Top-level keys that carry contact or preference data
    CONSENT_REQUIRED_KEYS = {
        "personal_info",
        "preferences",
        "budget_preferences",
        "loyalty_programs",
    }

    # Never writable through create/update
    PROTECTED_KEYS = {"user_id", "created_at", "updated_at", "frequent_routes"}

    # Derived members of budget_preferences, filled on read
    DERIVED_BUDGET_KEYS = {"preferred_airlines", "typical_spend"}

    def __init__(self, store: RecordStore, locks: UserLockManager) -> None:
        self._store = store
        self._locks = locks

    # ---------------------------------------------------------------------
    # PUBLIC API
    # ---------------------------------------------------------------------

    async def create_profile(self, user_id: str, initial_data: Optional[Dict[str, Any]] = None) -> TravelerProfile:
        """
        Persist a new profile.

        Raises:
            AlreadyExists: a profile for user_id is already stored
            ValidationError: initial_data is malformed
        """
        initial_data = dict(initial_data or {})
        self._check_writable_keys(initial_data)

        async with self._locks.hold(user_id):
            if await self._store.read(RecordFamily.PROFILES, user_id) is not None:
                raise AlreadyExists(f"Traveler profile already exists for user: {user_id}")

            now = utcnow()
            profile = self._build(
                {**initial_data, "user_id": user_id, "created_at": now, "updated_at": now}
            )
            await self._store.write_model(RecordFamily.PROFILES, user_id, profile)

        logger.info(f"✅ Created traveler profile for user: {user_id}")
        return profile

    async def get_profile(self, user_id: str, tolerate_corrupt: bool = False) -> Optional[TravelerProfile]:
        """
        Fetch-or-default lookup: None when no profile exists.

        With tolerate_corrupt=True an unreadable record is logged and treated
        as absent; otherwise CorruptRecord propagates.
        """
        try:
            return await self._store.read_model(RecordFamily.PROFILES, user_id, TravelerProfile)
        except CorruptRecord as e:
            if not tolerate_corrupt:
                raise
            logger.warning(f"Ignoring corrupt profile for user {user_id}: {e.reason}")
            return None

    async def require_profile(self, user_id: str) -> TravelerProfile:
        """
        Fetch-or-fail lookup for callers that expect the profile to exist.

        Raises:
            NotFound: no profile stored for user_id
        """
        profile = await self.get_profile(user_id)
        if profile is None:
            raise NotFound(f"Traveler profile not found for user: {user_id}")
        return profile

    async def update_profile(
        self,
        user_id: str,
        partial_update: Dict[str, Any],
        consent_given: bool = False,
    ) -> TravelerProfile:
        """
        Shallow-merge partial_update into the stored profile (upsert).

        Raises:
            ConsentRequired: the update touches personal/preference data without consent
            ValidationError: protected, derived or unknown keys, or invalid values
        """
        partial_update = dict(partial_update or {})
        self._check_writable_keys(partial_update)

        gated = self.CONSENT_REQUIRED_KEYS.intersection(partial_update)
        if gated and not consent_given:
            logger.warning(
                f"Rejected profile update for user {user_id}: consent required for {sorted(gated)}"
            )
            raise ConsentRequired(
                f"Consent is required to update: {', '.join(sorted(gated))}"
            )

        async with self._locks.hold(user_id):
            existing = await self._store.read_model(RecordFamily.PROFILES, user_id, TravelerProfile)
            now = utcnow()

            if existing is None:
                merged: Dict[str, Any] = {"user_id": user_id, "created_at": now}
                created = True
            else:
                merged = existing.model_dump()
                created = False

            merged.update(partial_update)
            # updated_at never precedes created_at, even under clock skew
            merged["updated_at"] = max(now, merged["created_at"]) if existing else now

            profile = self._build(merged)
            await self._store.write_model(RecordFamily.PROFILES, user_id, profile)

        if created:
            logger.info(f"✅ Created traveler profile for user {user_id} on first update")
        else:
            logger.info(f"✅ Updated traveler profile for user: {user_id} ({sorted(partial_update)})")
        return profile

    # ---------------------------------------------------------------------
    # INTERNAL HELPERS
    # ---------------------------------------------------------------------

    def _check_writable_keys(self, data: Dict[str, Any]) -> None:
        protected = self.PROTECTED_KEYS.intersection(data)
        if protected:
            raise ValidationError(f"Fields are not writable: {', '.join(sorted(protected))}")

        budget = data.get("budget_preferences")
        if isinstance(budget, dict):
            derived = self.DERIVED_BUDGET_KEYS.intersection(budget)
            if derived:
                raise ValidationError(
                    f"Derived budget fields are not writable: {', '.join(sorted(derived))}"
                )

    def _build(self, data: Dict[str, Any]) -> TravelerProfile:
        """Validate and strip derived values so only stated data is stored."""
        try:
            profile = TravelerProfile.model_validate(data)
        except PydanticValidationError as e:
            raise ValidationError(f"Invalid profile data: {e}") from e

        profile.frequent_routes = []
        profile.budget_preferences.preferred_airlines = []
        profile.budget_preferences.typical_spend = None
        return profile
