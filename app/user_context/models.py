# app/user_context/models.py
"""
Centralized data models for the traveler context subsystem.
All Pydantic v2 models and enums live here to prevent circular imports.
Validators normalize the loose shapes that arrive from the API layer and
from stored JSON records.
"""

import math
from enum import Enum
from typing import Optional, List, Dict, Any
from datetime import date, datetime, timezone
from pydantic import BaseModel, ConfigDict, Field, field_validator


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _as_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Naive datetimes are treated as UTC so stored and fresh values compare."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def normalize_location(code: Optional[str]) -> Optional[str]:
    if code is None:
        return None
    return code.strip().upper()


def route_key(origin: str, destination: str) -> str:
    return f"{origin}→{destination}"


# ============================================================
# ENUMS
# ============================================================

class CabinClass(str, Enum):
    """Cabin class options, cheapest first"""
    ECONOMY = "economy"
    PREMIUM_ECONOMY = "premium_economy"
    BUSINESS = "business"
    FIRST = "first"

    @classmethod
    def parse(cls, value: Any) -> "CabinClass":
        if isinstance(value, cls):
            return value
        normalized = str(value).strip().lower().replace("-", "_").replace(" ", "_")
        return cls(normalized)


# Deterministic fallback order for class tie-breaks
CABIN_CLASS_ORDER = [
    CabinClass.ECONOMY,
    CabinClass.PREMIUM_ECONOMY,
    CabinClass.BUSINESS,
    CabinClass.FIRST,
]


class BookingStatus(str, Enum):
    CONFIRMED = "confirmed"
    CANCELLED = "cancelled"
    PENDING = "pending"


class DocumentType(str, Enum):
    PASSPORT = "passport"
    VISA = "visa"


class SuggestionType(str, Enum):
    """Types of suggestion chips"""
    FREQUENT_ROUTE = "frequent_route"
    AIRLINE = "airline"
    TRAVEL_CLASS = "travel_class"
    BUDGET = "budget"


# ============================================================
# TRAVELER PROFILE
# ============================================================

class ContactInfo(BaseModel):
    model_config = ConfigDict(extra="forbid")

    email: Optional[str] = None
    phone: Optional[str] = None


class PersonalInfo(BaseModel):
    model_config = ConfigDict(extra="forbid")

    first_name: str = ""
    last_name: str = ""
    date_of_birth: Optional[date] = None
    gender: str = ""
    nationality: str = "US"
    contact: ContactInfo = Field(default_factory=ContactInfo)


class TravelDocument(BaseModel):
    """Passport or visa record. Expiry must be a real calendar date."""
    model_config = ConfigDict(extra="forbid", use_enum_values=True)

    type: DocumentType
    number: str = Field(..., min_length=1)
    issuing_country: Optional[str] = None
    expiry_date: Optional[date] = None

    @field_validator("type", mode="before")
    @classmethod
    def parse_document_type(cls, value):
        if isinstance(value, str):
            return value.strip().lower()
        return value


class TravelPreferences(BaseModel):
    model_config = ConfigDict(extra="forbid")

    seat_preference: str = "AISLE"
    meal_preference: str = "STANDARD"
    special_assistance: List[str] = Field(default_factory=list)


class LoyaltyMembership(BaseModel):
    model_config = ConfigDict(extra="forbid")

    program: str = Field(..., min_length=1)
    number: str = Field(..., min_length=1)
    tier: Optional[str] = None


class FrequentRoute(BaseModel):
    route: str
    origin: str
    destination: str
    count: int
    last_seen: datetime


class BudgetPreferences(BaseModel):
    """
    Explicit budget settings plus fields derived from booking behavior.
    preferred_airlines and typical_spend are filled on read, never stored.
    """
    model_config = ConfigDict(extra="forbid", use_enum_values=True)

    preferred_class: Optional[CabinClass] = None
    max_budget: Optional[float] = Field(None, ge=0)
    preferred_airlines: List[str] = Field(default_factory=list)
    typical_spend: Optional[float] = None

    @field_validator("preferred_class", mode="before")
    @classmethod
    def parse_preferred_class(cls, value):
        if value is None or value == "":
            return None
        return CabinClass.parse(value)


class TravelerProfile(BaseModel):
    model_config = ConfigDict(extra="forbid")

    user_id: str = Field(..., min_length=1)
    created_at: datetime
    updated_at: datetime
    personal_info: PersonalInfo = Field(default_factory=PersonalInfo)
    documents: List[TravelDocument] = Field(default_factory=list)
    preferences: TravelPreferences = Field(default_factory=TravelPreferences)
    loyalty_programs: List[LoyaltyMembership] = Field(default_factory=list)
    frequent_routes: List[FrequentRoute] = Field(default_factory=list)
    budget_preferences: BudgetPreferences = Field(default_factory=BudgetPreferences)

    @field_validator("created_at", "updated_at", mode="after")
    @classmethod
    def ensure_utc(cls, value):
        return _as_utc(value)


# ============================================================
# BOOKING HISTORY
# ============================================================

class Price(BaseModel):
    amount: float = Field(..., ge=0)
    currency: str = "USD"

    @field_validator("amount")
    @classmethod
    def finite_amount(cls, value):
        if not math.isfinite(value):
            raise ValueError("price amount must be finite")
        return value

    @field_validator("currency", mode="before")
    @classmethod
    def parse_currency(cls, value):
        if value is None:
            return "USD"
        return str(value).strip().upper()


class BookingEvent(BaseModel):
    """
    Immutable fact of one booking outcome.
    id, sequence and timestamp are assigned by the history tracker when absent.
    """
    model_config = ConfigDict(frozen=True, use_enum_values=True)

    id: Optional[str] = None
    sequence: Optional[int] = None
    timestamp: Optional[datetime] = None
    user_id: str = Field(..., min_length=1)
    origin: str = Field(..., min_length=1)
    destination: str = Field(..., min_length=1)
    departure_date: Optional[date] = None
    carrier: Optional[str] = None
    flight_number: Optional[str] = None
    cabin_class: Optional[CabinClass] = None
    price: Price
    passenger_count: int = Field(1, ge=1)
    status: BookingStatus = Field(BookingStatus.CONFIRMED, validate_default=True)
    notes: str = ""

    @field_validator("origin", "destination", mode="before")
    @classmethod
    def parse_location(cls, value):
        if isinstance(value, str):
            return normalize_location(value)
        return value

    @field_validator("carrier", mode="before")
    @classmethod
    def parse_carrier(cls, value):
        if isinstance(value, str):
            return value.strip().upper() or None
        return value

    @field_validator("cabin_class", mode="before")
    @classmethod
    def parse_cabin_class(cls, value):
        if value is None or value == "":
            return None
        return CabinClass.parse(value)

    @field_validator("status", mode="before")
    @classmethod
    def parse_status(cls, value):
        if isinstance(value, str):
            return value.strip().lower()
        return value

    @field_validator("timestamp", mode="after")
    @classmethod
    def ensure_utc(cls, value):
        return _as_utc(value)

    @property
    def route(self) -> str:
        return route_key(self.origin, self.destination)

    @property
    def is_confirmed(self) -> bool:
        return self.status == BookingStatus.CONFIRMED


class RouteCounter(BaseModel):
    origin: str
    destination: str
    count: int = 0
    last_seen: datetime

    @field_validator("last_seen", mode="after")
    @classmethod
    def ensure_utc(cls, value):
        return _as_utc(value)


class BookingLog(BaseModel):
    """Stored shape of the booking-history family."""
    user_id: str
    events: List[BookingEvent] = Field(default_factory=list)
    next_sequence: int = 1
    last_confirmed_sequence: int = 0
    route_index: Dict[str, RouteCounter] = Field(default_factory=dict)


# ============================================================
# CONVERSATION CONTEXT
# ============================================================

class TravelIntent(BaseModel):
    """Structured guess extracted from the user's raw input."""
    model_config = ConfigDict(extra="allow", use_enum_values=True)

    origin: Optional[str] = None
    destination: Optional[str] = None
    departure_date: Optional[str] = None
    passengers: Optional[int] = None
    cabin_class: Optional[CabinClass] = None

    @field_validator("cabin_class", mode="before")
    @classmethod
    def parse_cabin_class(cls, value):
        """Intent is a guess; an unknown class is dropped rather than rejected"""
        if value is None or value == "":
            return None
        try:
            return CabinClass.parse(value)
        except ValueError:
            return None


class BookingDecision(BaseModel):
    booking_id: str
    confirmed: bool = True


class ConversationTurn(BaseModel):
    model_config = ConfigDict(extra="allow")

    timestamp: datetime
    user_input: str = ""
    extracted_intent: TravelIntent = Field(default_factory=TravelIntent)
    suggestions_shown: List[Dict[str, Any]] = Field(default_factory=list)
    user_response: Optional[str] = None
    booking_decision: Optional[BookingDecision] = None
    session_id: Optional[str] = None

    @field_validator("timestamp", mode="after")
    @classmethod
    def ensure_utc(cls, value):
        return _as_utc(value)


class ConversationWindow(BaseModel):
    """Stored shape of the conversation-context family, oldest turn first."""
    user_id: str
    turns: List[ConversationTurn] = Field(default_factory=list)


# ============================================================
# PREFERENCE AGGREGATE
# ============================================================

class CarrierCounter(BaseModel):
    count: int = 0
    last_seen: datetime

    @field_validator("last_seen", mode="after")
    @classmethod
    def ensure_utc(cls, value):
        return _as_utc(value)


class BudgetStats(BaseModel):
    """
    Streaming moments of confirmed booking prices in one reference currency.
    Welford's update keeps mean/variance numerically stable over long histories.
    """
    count: int = 0
    mean: float = 0.0
    m2: float = 0.0
    min: Optional[float] = None
    max: Optional[float] = None
    currency: str = "USD"
    skipped_conversions: int = 0

    def add(self, value: float) -> None:
        self.count += 1
        delta = value - self.mean
        self.mean += delta / self.count
        self.m2 += delta * (value - self.mean)
        self.min = value if self.min is None else min(self.min, value)
        self.max = value if self.max is None else max(self.max, value)

    @property
    def variance(self) -> Optional[float]:
        # Population variance
        if self.count == 0:
            return None
        return self.m2 / self.count

    @property
    def stddev(self) -> Optional[float]:
        variance = self.variance
        if variance is None:
            return None
        return math.sqrt(max(variance, 0.0))


class PreferenceAggregate(BaseModel):
    user_id: str
    route_frequency: Dict[str, RouteCounter] = Field(default_factory=dict)
    carrier_frequency: Dict[str, CarrierCounter] = Field(default_factory=dict)
    class_frequency: Dict[str, int] = Field(default_factory=dict)
    budget_stats: BudgetStats = Field(default_factory=BudgetStats)
    applied_through: int = 0
    stale: bool = False
    updated_at: Optional[datetime] = None

    @property
    def is_empty(self) -> bool:
        return self.applied_through == 0 and not self.route_frequency

    def replay_view(self) -> Dict[str, Any]:
        """Everything that must match between incremental update and replay."""
        return self.model_dump(exclude={"stale", "updated_at"})


# ============================================================
# SUGGESTIONS
# ============================================================

class QueryContext(BaseModel):
    """What the user is currently asking about; every field optional."""
    model_config = ConfigDict(use_enum_values=True)

    origin: Optional[str] = None
    destination: Optional[str] = None
    departure_date: Optional[date] = None
    cabin_class: Optional[CabinClass] = None

    @field_validator("origin", "destination", mode="before")
    @classmethod
    def parse_location(cls, value):
        if isinstance(value, str):
            return normalize_location(value) or None
        return value

    @field_validator("cabin_class", mode="before")
    @classmethod
    def parse_cabin_class(cls, value):
        if value is None or value == "":
            return None
        return CabinClass.parse(value)


class PopularRoute(BaseModel):
    route: str
    origin: str
    destination: str
    count: int
    last_seen: datetime


class RouteSuggestion(PopularRoute):
    confidence: float


class CarrierSuggestion(BaseModel):
    carrier: str
    count: int
    last_seen: datetime


class ClassSuggestion(BaseModel):
    model_config = ConfigDict(use_enum_values=True)

    cabin_class: CabinClass
    count: int
    tie_break: Optional[str] = None  # "profile" | "cheapest"


class BudgetSuggestion(BaseModel):
    low: float
    high: float
    mean: float
    stddev: float
    currency: str
    sample_size: int
    max_budget: Optional[float] = None


class Suggestion(BaseModel):
    """Suggestion chip for the UI"""
    model_config = ConfigDict(use_enum_values=True)

    type: SuggestionType
    title: str
    text: str
    action: str
    confidence: Optional[float] = None
    metadata: Dict[str, Any] = Field(default_factory=dict)


class SuggestionSet(BaseModel):
    user_id: str
    routes: List[RouteSuggestion] = Field(default_factory=list)
    carrier: Optional[CarrierSuggestion] = None
    cabin_class: Optional[ClassSuggestion] = None
    budget: Optional[BudgetSuggestion] = None

    def chips(self) -> List[Suggestion]:
        """Flattened view, always ordered routes, carrier, class, budget."""
        chips: List[Suggestion] = []

        if self.routes:
            for route in self.routes:
                chips.append(Suggestion(
                    type=SuggestionType.FREQUENT_ROUTE,
                    title="Frequently Traveled Routes",
                    text=f"{route.origin} → {route.destination}",
                    action=f"book flight from {route.origin} to {route.destination}",
                    confidence=route.confidence,
                    metadata={"route": route.route, "count": route.count},
                ))

        if self.carrier:
            chips.append(Suggestion(
                type=SuggestionType.AIRLINE,
                title="Preferred Airline",
                text=f"You often fly with {self.carrier.carrier}",
                action=f"find flights with {self.carrier.carrier}",
                metadata={"count": self.carrier.count},
            ))

        if self.cabin_class:
            label = CabinClass(self.cabin_class.cabin_class).value.replace("_", " ")
            chips.append(Suggestion(
                type=SuggestionType.TRAVEL_CLASS,
                title="Preferred Travel Class",
                text=f"You usually prefer {label} class",
                action=f"book {label} class flight",
                metadata={"count": self.cabin_class.count},
            ))

        if self.budget:
            chips.append(Suggestion(
                type=SuggestionType.BUDGET,
                title="Budget-Friendly Options",
                text=(
                    f"Your typical budget is {self.budget.low:.0f}-{self.budget.high:.0f} "
                    f"{self.budget.currency}"
                ),
                action=f"find flights under {self.budget.high:.0f} {self.budget.currency}",
                metadata={"mean": self.budget.mean, "sample_size": self.budget.sample_size},
            ))

        return chips


class UserStats(BaseModel):
    model_config = ConfigDict(use_enum_values=True)

    user_id: str
    trip_count: int = 0
    average_budget: Optional[float] = None
    total_spent: float = 0.0
    top_route: Optional[PopularRoute] = None
    member_since: Optional[datetime] = None
    last_trip_at: Optional[datetime] = None
    preferred_class: Optional[CabinClass] = None


class UserDataExport(BaseModel):
    """Union of every record family held for one user."""
    user_id: str
    profile: Optional[TravelerProfile] = None
    history: List[BookingEvent] = Field(default_factory=list)
    conversations: List[ConversationTurn] = Field(default_factory=list)
    preferences: Optional[PreferenceAggregate] = None
    stats: Optional[UserStats] = None
