# app/api/v1/endpoints/user_context.py
"""
Traveler Context API Endpoints
Thin layer over UserContextService - handles HTTP concerns only.
Service errors are mapped to status codes by the handlers registered in app.main.
"""

import logging
from typing import List, Optional

from fastapi import APIRouter, Body, Depends, Query, status

from app.core.config import settings
from app.api.v1.dependencies import get_user_context_service
from app.user_context.models import (
    BookingEvent,
    ConversationTurn,
    PopularRoute,
    Suggestion,
    SuggestionSet,
    TravelerProfile,
    UserDataExport,
    UserStats,
)
from schemas.user_context import (
    BookingCreate,
    ConversationTurnCreate,
    ErasureResult,
    ProfileCreate,
    SuggestionQuery,
)
from services.user_context_service import UserContextService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/users/{user_id}", tags=["user context"])


# ============================================================
# PROFILE
# ============================================================

@router.post("/profile", response_model=TravelerProfile, status_code=status.HTTP_201_CREATED)
async def create_profile(
    user_id: str,
    body: Optional[ProfileCreate] = Body(None),
    service: UserContextService = Depends(get_user_context_service),
):
    """Create a traveler profile. 409 if one already exists."""
    return await service.create_profile(user_id, body.to_payload() if body else None)


@router.get("/profile", response_model=TravelerProfile)
async def get_profile(
    user_id: str,
    service: UserContextService = Depends(get_user_context_service),
):
    """Stored profile plus frequent routes and learned budget preferences."""
    return await service.require_profile(user_id)


@router.patch("/profile", response_model=TravelerProfile)
async def update_profile(
    user_id: str,
    body: ProfileCreate,
    consent: bool = Query(False, description="Caller confirms consent to store personal data"),
    service: UserContextService = Depends(get_user_context_service),
):
    """
    Shallow-merge the given blocks into the profile (creates it if absent).
    Personal, preference, budget and loyalty data require `consent=true`.
    """
    return await service.update_profile(user_id, body.to_payload(), consent_given=consent)


# ============================================================
# BOOKINGS
# ============================================================

@router.post("/bookings", response_model=BookingEvent, status_code=status.HTTP_201_CREATED)
async def add_booking(
    user_id: str,
    body: BookingCreate,
    service: UserContextService = Depends(get_user_context_service),
):
    """
    Record a booking outcome.

    **Example request:**
```json
    {
        "origin": "SEA",
        "destination": "YVR",
        "carrier": "AC",
        "cabin_class": "economy",
        "price": {"amount": 240.0, "currency": "USD"}
    }
```
    """
    event = await service.add_booking(user_id, body.to_payload())
    logger.info(f"✓ Booking {event.id} recorded via API for user {user_id}")
    return event


@router.get("/bookings", response_model=List[BookingEvent])
async def get_history(
    user_id: str,
    limit: Optional[int] = Query(None, ge=0, le=500),
    service: UserContextService = Depends(get_user_context_service),
):
    """Most recent bookings first."""
    return await service.get_history(user_id, limit)


@router.get("/routes/popular", response_model=List[PopularRoute])
async def get_popular_routes(
    user_id: str,
    top_n: int = Query(settings.POPULAR_ROUTES_TOP_N, ge=0, le=100),
    service: UserContextService = Depends(get_user_context_service),
):
    return await service.get_popular_routes(user_id, top_n)


# ============================================================
# CONVERSATION
# ============================================================

@router.post("/conversation", response_model=ConversationTurn, status_code=status.HTTP_201_CREATED)
async def record_turn(
    user_id: str,
    body: ConversationTurnCreate,
    service: UserContextService = Depends(get_user_context_service),
):
    return await service.record_turn(user_id, body.to_payload())


@router.get("/conversation", response_model=List[ConversationTurn])
async def get_recent_turns(
    user_id: str,
    limit: Optional[int] = Query(None, ge=0, le=50),
    session_id: Optional[str] = Query(None, description="Only turns of this session, oldest first"),
    service: UserContextService = Depends(get_user_context_service),
):
    """Most recent turns first, or one session's turns in order."""
    if session_id:
        return await service.get_session_turns(user_id, session_id)
    return await service.get_recent_turns(user_id, limit)


# ============================================================
# SUGGESTIONS & STATS
# ============================================================

@router.post("/suggestions")
async def generate_suggestions(
    user_id: str,
    body: Optional[SuggestionQuery] = Body(None),
    service: UserContextService = Depends(get_user_context_service),
):
    """
    Personalized suggestions for the current query.

    **Response includes:**
    - `suggestions`: structured parts (routes, carrier, cabin_class, budget)
    - `chips`: flattened suggestion chips in display order
    """
    query = body.model_dump(exclude_none=True) if body else None
    suggestions: SuggestionSet = await service.generate_suggestions(user_id, query)
    chips: List[Suggestion] = suggestions.chips()
    return {
        "suggestions": suggestions.model_dump(mode="json"),
        "chips": [chip.model_dump(mode="json") for chip in chips],
    }


@router.get("/stats", response_model=UserStats)
async def get_stats(
    user_id: str,
    service: UserContextService = Depends(get_user_context_service),
):
    return await service.get_stats(user_id)


# ============================================================
# PRIVACY
# ============================================================

@router.get("/export", response_model=UserDataExport)
async def export_user_data(
    user_id: str,
    service: UserContextService = Depends(get_user_context_service),
):
    """Everything stored about the user."""
    return await service.export_user_data(user_id)


@router.delete("", response_model=ErasureResult)
async def erase_user_data(
    user_id: str,
    service: UserContextService = Depends(get_user_context_service),
):
    """Hard-delete the user from every record family."""
    erased = await service.erase_user_data(user_id)
    return ErasureResult(user_id=user_id, erased=erased)
