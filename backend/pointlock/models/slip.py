from datetime import datetime
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, Field


class MarketType(str, Enum):
    moneyline = "moneyline"
    spread = "spread"
    total = "total"
    prop = "prop"


class PickStatus(str, Enum):
    PENDING = "PENDING"
    HIT = "HIT"
    MISS = "MISS"
    PUSH = "PUSH"
    VOID = "VOID"


class SlipStatus(str, Enum):
    DRAFT = "DRAFT"        # Editable, no coins committed
    PENDING = "PENDING"    # Locked, awaiting events
    ACTIVE = "ACTIVE"      # Events in progress (set by settlement)
    WON = "WON"
    LOST = "LOST"
    VOID = "VOID"


class EventStatus(str, Enum):
    SCHEDULED = "SCHEDULED"
    LIVE = "LIVE"
    COMPLETED = "COMPLETED"
    CANCELED = "CANCELED"
    POSTPONED = "POSTPONED"


class SlipPickInDB(BaseModel):
    """One pick embedded in a slip document. All numbers are server-computed."""
    id: str
    event_id: str
    market_type: MarketType
    selection: str
    line: Optional[float] = None
    american_odds: int
    decimal_odds: float
    point_value: int                              # Difficulty engine
    display_points: int                           # Tier/market engine
    coin_cost: int
    tier: str                                     # PickTier name
    prop_type: Optional[str] = None
    prop_player_id: Optional[str] = None
    prop_player_name: Optional[str] = None
    status: PickStatus = PickStatus.PENDING
    created_at: datetime


class SlipInDB(BaseModel):
    """Full slip document as stored in MongoDB."""
    user_id: str
    name: Optional[str] = None
    status: SlipStatus = SlipStatus.DRAFT
    picks: List[SlipPickInDB]
    total_picks: int
    total_coin_cost: int = 0
    min_coin_spend: int = 0
    coin_spend_met: bool = False                  # True only after lock
    point_potential: int = 0
    total_odds: float = 1.0
    stake: float = 0.0
    potential_payout: float = 0.0
    version: int = 0                              # Optimistic-lock token
    locked_at: Optional[datetime] = None
    settled_at: Optional[datetime] = None
    created_at: datetime
    updated_at: datetime


# ---------- Request / Response models ----------

class PickInput(BaseModel):
    """One pick in a create/update request."""
    event_id: str
    market_type: MarketType
    selection: str
    line: Optional[float] = None
    american_odds: int
    decimal_odds: Optional[float] = None
    prop_type: Optional[str] = None
    prop_player_id: Optional[str] = None
    prop_player_name: Optional[str] = None


class CreateSlipRequest(BaseModel):
    """Request body for creating a draft slip."""
    name: Optional[str] = Field(None, max_length=100)
    picks: List[PickInput] = Field(..., min_length=1, max_length=10)
    stake: float = Field(0.0, ge=0)


class UpdateSlipRequest(BaseModel):
    """Request body for editing a draft slip."""
    name: Optional[str] = Field(None, max_length=100)
    add_picks: List[PickInput] = []
    remove_pick_ids: List[str] = []
    stake: Optional[float] = Field(None, ge=0)


class DraftPickInput(BaseModel):
    """A locally cached draft pick to re-check before submission."""
    event_id: str
    market_type: MarketType
    selection: str
    line: Optional[float] = None
    current_odds: int


class ValidateDraftRequest(BaseModel):
    picks: List[DraftPickInput] = Field(..., min_length=1, max_length=8)


class ValidatedDraftPick(BaseModel):
    event_id: str
    market_type: str
    selection: str
    current_odds: int
    odds_changed: bool
    is_valid: bool
    reason: Optional[str] = None


class ValidateDraftResponse(BaseModel):
    picks: List[ValidatedDraftPick]
    all_valid: bool
