"""
Profile Manager Tests
=====================
Creation, consent guard, shallow merge, upsert and protected fields.
"""

import pytest

from app.db.locks import UserLockManager
from app.models.models import RecordFamily
from services.exceptions import (
    AlreadyExists,
    ConsentRequired,
    CorruptRecord,
    NotFound,
    ValidationError,
)
from services.profile_service import ProfileService


@pytest.fixture
def profiles(store):
    return ProfileService(store, UserLockManager())


@pytest.mark.asyncio
async def test_create_profile_applies_defaults(profiles):
    profile = await profiles.create_profile("u1")

    assert profile.user_id == "u1"
    assert profile.created_at == profile.updated_at
    assert profile.preferences.seat_preference == "AISLE"
    assert profile.preferences.meal_preference == "STANDARD"
    assert profile.personal_info.nationality == "US"

    stored = await profiles.get_profile("u1")
    assert stored == profile


@pytest.mark.asyncio
async def test_create_profile_twice_raises_already_exists(profiles):
    await profiles.create_profile("u1", {"personal_info": {"first_name": "Ada"}})

    with pytest.raises(AlreadyExists):
        await profiles.create_profile("u1")

    profile = await profiles.require_profile("u1")
    assert profile.personal_info.first_name == "Ada"


@pytest.mark.asyncio
async def test_require_profile_missing_raises_not_found(profiles):
    assert await profiles.get_profile("ghost") is None
    with pytest.raises(NotFound):
        await profiles.require_profile("ghost")


@pytest.mark.asyncio
async def test_update_without_consent_writes_nothing(profiles, store):
    """
    Test: Personal data update without consent.

    Expected:
    - ConsentRequired raised
    - No profile record created
    """
    with pytest.raises(ConsentRequired):
        await profiles.update_profile("u1", {"personal_info": {"first_name": "Ada"}}, consent_given=False)

    assert await store.read(RecordFamily.PROFILES, "u1") is None


@pytest.mark.asyncio
async def test_update_without_consent_leaves_existing_profile_unchanged(profiles):
    created = await profiles.create_profile("u1", {"preferences": {"seat_preference": "WINDOW"}})

    with pytest.raises(ConsentRequired):
        await profiles.update_profile("u1", {"preferences": {"seat_preference": "AISLE"}})

    assert await profiles.get_profile("u1") == created


@pytest.mark.asyncio
async def test_update_with_consent_upserts_missing_profile(profiles):
    profile = await profiles.update_profile(
        "u1",
        {"budget_preferences": {"preferred_class": "Business", "max_budget": 900}},
        consent_given=True,
    )

    assert profile.budget_preferences.preferred_class == "business"
    assert profile.budget_preferences.max_budget == 900
    assert (await profiles.require_profile("u1")).created_at == profile.created_at


@pytest.mark.asyncio
async def test_update_is_shallow_merge(profiles):
    """
    Test: Top-level keys replace the stored block wholesale.

    Expected:
    - preferences block replaced (meal falls back to default)
    - untouched blocks preserved
    """
    await profiles.create_profile("u1", {
        "personal_info": {"first_name": "Ada", "last_name": "Lovelace"},
        "preferences": {"seat_preference": "WINDOW", "meal_preference": "VEGETARIAN"},
    })

    updated = await profiles.update_profile(
        "u1", {"preferences": {"seat_preference": "AISLE"}}, consent_given=True
    )

    assert updated.preferences.seat_preference == "AISLE"
    assert updated.preferences.meal_preference == "STANDARD"
    assert updated.personal_info.first_name == "Ada"
    assert updated.updated_at >= updated.created_at


@pytest.mark.asyncio
async def test_documents_update_needs_no_consent(profiles):
    profile = await profiles.update_profile(
        "u1",
        {"documents": [{"type": "PASSPORT", "number": "X123", "expiry_date": "2031-05-01"}]},
    )

    assert profile.documents[0].type == "passport"
    assert str(profile.documents[0].expiry_date) == "2031-05-01"


@pytest.mark.asyncio
async def test_invalid_calendar_date_rejected(profiles):
    with pytest.raises(ValidationError):
        await profiles.update_profile(
            "u1", {"documents": [{"type": "passport", "number": "X123", "expiry_date": "2031-02-30"}]}
        )
    assert await profiles.get_profile("u1") is None


@pytest.mark.asyncio
@pytest.mark.parametrize("key", ["user_id", "created_at", "updated_at", "frequent_routes"])
async def test_protected_keys_rejected(profiles, key):
    await profiles.create_profile("u1")

    with pytest.raises(ValidationError):
        await profiles.update_profile("u1", {key: "anything"}, consent_given=True)


@pytest.mark.asyncio
async def test_derived_budget_fields_rejected(profiles):
    with pytest.raises(ValidationError):
        await profiles.update_profile(
            "u1", {"budget_preferences": {"typical_spend": 100}}, consent_given=True
        )


@pytest.mark.asyncio
async def test_unknown_keys_rejected(profiles):
    with pytest.raises(ValidationError):
        await profiles.update_profile("u1", {"favourite_colour": "teal"})


@pytest.mark.asyncio
async def test_corrupt_profile_propagates_unless_tolerated(profiles, store):
    await store.write(RecordFamily.PROFILES, "u1", {"user_id": "u1"})

    with pytest.raises(CorruptRecord):
        await profiles.get_profile("u1")
    assert await profiles.get_profile("u1", tolerate_corrupt=True) is None
