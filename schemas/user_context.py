# schemas/user_context.py
from datetime import date, datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field


class ProfileCreate(BaseModel):
    """
    Initial profile data. Every block is optional; omitted blocks get defaults.
    """
    personal_info: Optional[Dict[str, Any]] = None
    documents: Optional[List[Dict[str, Any]]] = None
    preferences: Optional[Dict[str, Any]] = None
    loyalty_programs: Optional[List[Dict[str, Any]]] = None
    budget_preferences: Optional[Dict[str, Any]] = None

    model_config = ConfigDict(
        extra="forbid",
        json_schema_extra={
            "example": {
                "personal_info": {"first_name": "Ada", "last_name": "Lovelace", "nationality": "GB"},
                "preferences": {"seat_preference": "WINDOW"},
                "budget_preferences": {"preferred_class": "business", "max_budget": 1200},
            }
        },
    )

    def to_payload(self) -> Dict[str, Any]:
        return self.model_dump(exclude_unset=True)


class PriceIn(BaseModel):
    amount: float = Field(..., ge=0, description="Total booking price")
    currency: str = Field("USD", description="ISO 4217 currency code")


class BookingCreate(BaseModel):
    """Booking outcome reported by the booking pipeline"""
    id: Optional[str] = Field(None, description="External booking id; generated when omitted")
    timestamp: Optional[datetime] = Field(None, description="Booking time; defaults to ingestion time")
    origin: str = Field(..., min_length=1, examples=["SEA"])
    destination: str = Field(..., min_length=1, examples=["YVR"])
    departure_date: Optional[date] = None
    carrier: Optional[str] = Field(None, examples=["AC"])
    flight_number: Optional[str] = Field(None, examples=["AC8090"])
    cabin_class: Optional[str] = Field(None, examples=["economy"])
    price: PriceIn
    passenger_count: int = Field(1, ge=1)
    status: str = Field("confirmed", description="confirmed | cancelled | pending")
    notes: str = ""

    def to_payload(self) -> Dict[str, Any]:
        return self.model_dump(exclude_none=True)


class ConversationTurnCreate(BaseModel):
    timestamp: datetime = Field(..., description="When the turn happened")
    user_input: str = Field("", max_length=2000)
    extracted_intent: Dict[str, Any] = Field(default_factory=dict)
    suggestions_shown: List[Dict[str, Any]] = Field(default_factory=list)
    user_response: Optional[str] = None
    booking_decision: Optional[Dict[str, Any]] = None
    session_id: Optional[str] = None

    def to_payload(self) -> Dict[str, Any]:
        return self.model_dump(exclude_none=True)


class SuggestionQuery(BaseModel):
    """What the user is currently searching for; all optional"""
    origin: Optional[str] = Field(None, examples=["SEA"])
    destination: Optional[str] = Field(None, examples=["YVR"])
    departure_date: Optional[date] = None
    cabin_class: Optional[str] = None


class ErasureResult(BaseModel):
    user_id: str
    erased: List[str]
