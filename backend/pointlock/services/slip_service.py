"""
backend/pointlock/services/slip_service.py

Purpose:
    Slip lifecycle: create, edit, lock and delete multi-pick slips and
    recompute every aggregate server-side. Picks are embedded in the slip
    document so each mutation is a single atomic write, and every write on
    an existing slip is conditional on ``status=DRAFT`` and the observed
    ``version``.

    State machine:
        DRAFT --lock--> PENDING --settlement--> ACTIVE --settlement--> WON|LOST|VOID
        DRAFT --delete--> (gone)

Dependencies:
    - pointlock.services.pricing_engine
    - pointlock.services.tier_service
    - pointlock.services.event_service
    - pointlock.database
"""

import logging
import math
from functools import reduce
from operator import mul
from typing import Any, Optional

from bson import ObjectId

import pointlock.database as _db
from pointlock.config import settings
from pointlock.errors import (
    INVALID_ODDS,
    INVALID_PICK_COUNT,
    MIN_SPEND_NOT_MET,
    SLIP_ALREADY_LOCKED,
    SLIP_NOT_FOUND,
    BadRequestError,
    ConflictError,
    ForbiddenError,
    NotFoundError,
    ValidationError,
)
from pointlock.models.slip import EventStatus, MarketType, PickStatus, SlipStatus
from pointlock.models.tier import PickTier
from pointlock.monitoring.ledger_metrics import METRIC_SLIP_REJECTIONS, METRIC_SLIP_TRANSITIONS
from pointlock.services.event_service import ensure_events_open, get_events_by_ids
from pointlock.services.odds_converter import convert_american_odds, invalid_odds_reason
from pointlock.services.pricing_engine import (
    calculate_coin_cost,
    calculate_points,
    calculate_pick_point_value,
    calculate_slip_point_potential,
    get_min_coin_spend,
    validate_minimum_spend,
)
from pointlock.services.tier_service import ensure_tier_access, get_user_tier, required_tier
from pointlock.utils import ensure_utc, utcnow

logger = logging.getLogger("pointlock.slip_service")

LINE_TOLERANCE = 0.5

_SORTS = {
    "created_at": ("created_at", 1),
    "-created_at": ("created_at", -1),
    "updated_at": ("updated_at", 1),
    "-updated_at": ("updated_at", -1),
}


# ---------- Pick pricing ----------

def _parse_market(raw: Any) -> MarketType:
    try:
        return MarketType(raw)
    except ValueError:
        raise ValidationError(f"Unknown market type '{raw}'.") from None


def _validate_pick_inputs(picks: list[dict]) -> None:
    for pick in picks:
        _parse_market(pick.get("market_type"))
        conversion = convert_american_odds(pick.get("american_odds"))
        if not conversion.is_valid:
            raise ValidationError(
                invalid_odds_reason(pick.get("american_odds")),
                INVALID_ODDS,
                event_id=pick.get("event_id"),
            )


def _price_pick(pick: dict, user_tier: PickTier, now) -> dict:
    """Build a stored pick from client input. Only identity fields are taken from the client."""
    market = _parse_market(pick["market_type"])
    pick_tier = required_tier(market)
    ensure_tier_access(pick_tier, user_tier, market)

    odds = int(pick["american_odds"])
    conversion = convert_american_odds(odds)
    coin = calculate_coin_cost(conversion.implied_probability, pick_tier)
    display = calculate_points(conversion.implied_probability, odds, market)
    legacy = calculate_pick_point_value(odds)

    return {
        "id": str(ObjectId()),
        "event_id": str(pick["event_id"]),
        "market_type": market.value,
        "selection": pick["selection"],
        "line": pick.get("line"),
        "american_odds": odds,
        "decimal_odds": round(conversion.decimal_odds, 4),
        "point_value": legacy.point_value,
        "display_points": display.points,
        "coin_cost": coin.coin_cost,
        "tier": pick_tier.name,
        "prop_type": pick.get("prop_type"),
        "prop_player_id": pick.get("prop_player_id"),
        "prop_player_name": pick.get("prop_player_name"),
        "status": PickStatus.PENDING.value,
        "created_at": now,
    }


def _ensure_stored_pick_access(picks: list[dict], user_tier: PickTier) -> None:
    """Re-check stored picks against the user's current tier.

    The required tier is derived from the stored market type, not read back
    from the cached ``tier`` field.
    """
    for pick in picks:
        market = _parse_market(pick["market_type"])
        ensure_tier_access(required_tier(market), user_tier, market)


def _aggregate(picks: list[dict], stake: float) -> dict:
    """Slip totals derived from the full pick set."""
    total_odds = reduce(mul, (p["decimal_odds"] for p in picks), 1.0) if picks else 1.0
    potential = calculate_slip_point_potential(p["american_odds"] for p in picks)
    return {
        "total_picks": len(picks),
        "total_coin_cost": sum(int(p["coin_cost"]) for p in picks),
        "min_coin_spend": get_min_coin_spend(len(picks)),
        "point_potential": potential.total_point_potential,
        "total_odds": round(total_odds, 4),
        "stake": stake,
        "potential_payout": round(stake * total_odds, 2),
    }


def _check_pick_count(count: int, minimum: int = 1) -> None:
    if count < minimum or count > settings.SLIP_MAX_PICKS:
        raise ValidationError(
            f"A slip holds between {minimum} and {settings.SLIP_MAX_PICKS} picks (got {count}).",
            INVALID_PICK_COUNT,
        )


async def _find_owned_slip(slip_id: str, user_id: str) -> dict:
    slip = await _db.db.slips.find_one({"_id": ObjectId(slip_id), "user_id": user_id})
    if not slip:
        raise NotFoundError(f"Slip with ID {slip_id} not found.", SLIP_NOT_FOUND)
    return slip


# ---------- Lifecycle ----------

async def create_slip(
    user_id: str,
    picks: list[dict],
    stake: float = 0.0,
    name: Optional[str] = None,
) -> dict:
    """Create a DRAFT slip. Point values, coin costs and totals are computed here."""
    _check_pick_count(len(picks))
    _validate_pick_inputs(picks)
    await ensure_events_open(p["event_id"] for p in picks)

    user_tier = await get_user_tier(user_id)
    now = utcnow()
    stored_picks = [_price_pick(p, user_tier, now) for p in picks]

    doc = {
        "user_id": user_id,
        "name": name,
        "status": SlipStatus.DRAFT.value,
        "picks": stored_picks,
        **_aggregate(stored_picks, float(stake)),
        "coin_spend_met": False,
        "version": 0,
        "locked_at": None,
        "settled_at": None,
        "created_at": now,
        "updated_at": now,
    }
    result = await _db.db.slips.insert_one(doc)
    doc["_id"] = result.inserted_id

    METRIC_SLIP_TRANSITIONS.labels(operation="create").inc()
    logger.info(
        "Slip created: user=%s slip=%s picks=%d coins=%d total_odds=%.2f",
        user_id, doc["_id"], doc["total_picks"], doc["total_coin_cost"], doc["total_odds"],
    )
    return slip_to_response(doc)


async def get_slip_by_id(slip_id: str, user_id: Optional[str] = None) -> Optional[dict]:
    """Get a single slip by ID, optionally scoped to a user."""
    query: dict = {"_id": ObjectId(slip_id)}
    if user_id:
        query["user_id"] = user_id
    doc = await _db.db.slips.find_one(query)
    return slip_to_response(doc) if doc else None


async def get_user_slips(
    user_id: str,
    statuses: Optional[list[str]] = None,
    page: int = 1,
    limit: int = 20,
    sort: str = "-created_at",
) -> dict:
    """Paginated slips for a user, optionally filtered by status."""
    query: dict = {"user_id": user_id}
    if statuses:
        query["status"] = {"$in": [str(s) for s in statuses]}
    field, direction = _SORTS.get(sort, _SORTS["-created_at"])
    page = max(1, page)
    limit = max(1, limit)

    total = await _db.db.slips.count_documents(query)
    docs = await (
        _db.db.slips.find(query)
        .sort(field, direction)
        .skip((page - 1) * limit)
        .limit(limit)
        .to_list(length=limit)
    )
    return {
        "slips": [slip_to_response(d) for d in docs],
        "total": total,
        "page": page,
        "limit": limit,
        "total_pages": math.ceil(total / limit),
    }


async def update_slip(
    slip_id: str,
    user_id: str,
    add_picks: Optional[list[dict]] = None,
    remove_pick_ids: Optional[list[str]] = None,
    stake: Optional[float] = None,
    name: Optional[str] = None,
) -> dict:
    """Edit a DRAFT slip and rebuild its aggregates from the resulting pick set."""
    add_picks = add_picks or []
    remove_pick_ids = remove_pick_ids or []

    existing = await _find_owned_slip(slip_id, user_id)
    if existing["status"] != SlipStatus.DRAFT.value:
        raise ForbiddenError(
            f"Cannot modify slip with status '{existing['status']}'. Only DRAFT slips can be modified.",
            SLIP_ALREADY_LOCKED,
        )
    observed_version = existing.get("version", 0)

    current_picks = existing.get("picks", [])
    known_ids = {p["id"] for p in current_picks}
    unknown = [pid for pid in remove_pick_ids if pid not in known_ids]
    if unknown:
        raise BadRequestError(f"Pick IDs not found in this slip: {', '.join(unknown)}")

    removed = set(remove_pick_ids)
    remaining = [p for p in current_picks if p["id"] not in removed]
    _check_pick_count(len(remaining) + len(add_picks), minimum=0)

    user_tier = await get_user_tier(user_id)
    _ensure_stored_pick_access(remaining, user_tier)

    now = utcnow()
    new_picks: list[dict] = []
    if add_picks:
        _validate_pick_inputs(add_picks)
        await ensure_events_open(p["event_id"] for p in add_picks)
        new_picks = [_price_pick(p, user_tier, now) for p in add_picks]

    final_picks = remaining + new_picks
    final_stake = float(stake) if stake is not None else float(existing.get("stake") or 0.0)
    changes = {
        "picks": final_picks,
        **_aggregate(final_picks, final_stake),
        "updated_at": now,
    }
    if name is not None:
        changes["name"] = name

    result = await _db.db.slips.update_one(
        {
            "_id": existing["_id"],
            "user_id": user_id,
            "status": SlipStatus.DRAFT.value,
            "version": observed_version,
        },
        {"$set": changes, "$inc": {"version": 1}},
    )
    if result.modified_count == 0:
        raise ConflictError("Slip was modified concurrently. Reload and try again.")

    METRIC_SLIP_TRANSITIONS.labels(operation="update").inc()
    logger.info(
        "Slip updated: user=%s slip=%s added=%d removed=%d picks=%d",
        user_id, slip_id, len(new_picks), len(removed), len(final_picks),
    )
    updated = {**existing, **changes, "version": observed_version + 1}
    return slip_to_response(updated)


async def lock_slip(slip_id: str, user_id: str) -> dict:
    """Lock a DRAFT slip: re-price every pick from its odds, enforce minimum spend, move to PENDING."""
    existing = await _find_owned_slip(slip_id, user_id)
    if existing["status"] != SlipStatus.DRAFT.value:
        METRIC_SLIP_REJECTIONS.labels(operation="lock", code=SLIP_ALREADY_LOCKED).inc()
        raise BadRequestError(
            f"Slip is already locked with status '{existing['status']}'.",
            SLIP_ALREADY_LOCKED,
        )
    picks = existing.get("picks", [])
    if not picks:
        METRIC_SLIP_REJECTIONS.labels(operation="lock", code=INVALID_PICK_COUNT).inc()
        raise BadRequestError("Cannot lock a slip with no picks.", INVALID_PICK_COUNT)
    observed_version = existing.get("version", 0)

    await ensure_events_open(p["event_id"] for p in picks)
    user_tier = await get_user_tier(user_id)

    # Cached coin_cost/tier on the pick are ignored; both come from the odds.
    repriced: list[dict] = []
    for pick in picks:
        market = _parse_market(pick["market_type"])
        pick_tier = required_tier(market)
        ensure_tier_access(pick_tier, user_tier, market)
        conversion = convert_american_odds(pick["american_odds"])
        coin = calculate_coin_cost(conversion.implied_probability, pick_tier)
        repriced.append({**pick, "coin_cost": coin.coin_cost, "tier": pick_tier.name})

    spend = validate_minimum_spend(p["coin_cost"] for p in repriced)
    if not spend.ok:
        METRIC_SLIP_REJECTIONS.labels(operation="lock", code=MIN_SPEND_NOT_MET).inc()
        raise BadRequestError(
            spend.reason or "Minimum spend requirement not met.",
            MIN_SPEND_NOT_MET,
            shortfall=spend.shortfall,
        )

    now = utcnow()
    changes = {
        "picks": repriced,
        "status": SlipStatus.PENDING.value,
        "locked_at": now,
        "total_coin_cost": spend.total_coin_cost,
        "min_coin_spend": spend.min_coin_spend,
        "coin_spend_met": True,
        "updated_at": now,
    }
    result = await _db.db.slips.update_one(
        {
            "_id": existing["_id"],
            "user_id": user_id,
            "status": SlipStatus.DRAFT.value,
            "version": observed_version,
        },
        {"$set": changes, "$inc": {"version": 1}},
    )
    if result.modified_count == 0:
        raise ConflictError("Slip was modified concurrently. Reload and try again.")

    METRIC_SLIP_TRANSITIONS.labels(operation="lock").inc()
    logger.info(
        "Slip locked: user=%s slip=%s picks=%d coins=%d min_spend=%d",
        user_id, slip_id, len(repriced), spend.total_coin_cost, spend.min_coin_spend,
    )
    locked = {**existing, **changes, "version": observed_version + 1}
    return slip_to_response(locked)


async def delete_slip(slip_id: str, user_id: str) -> bool:
    """Delete a DRAFT slip together with its picks."""
    existing = await _find_owned_slip(slip_id, user_id)
    if existing["status"] != SlipStatus.DRAFT.value:
        raise ForbiddenError(
            f"Cannot delete slip with status '{existing['status']}'. Only DRAFT slips can be deleted.",
            SLIP_ALREADY_LOCKED,
        )
    result = await _db.db.slips.delete_one(
        {"_id": existing["_id"], "user_id": user_id, "status": SlipStatus.DRAFT.value}
    )
    if result.deleted_count == 0:
        raise ConflictError("Slip was locked before it could be deleted.")

    METRIC_SLIP_TRANSITIONS.labels(operation="delete").inc()
    logger.info("Slip deleted: user=%s slip=%s", user_id, slip_id)
    return True


# ---------- Offline draft revalidation ----------

def _number(value: Any) -> Optional[float]:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return None
    return value


def _line_matches(expected: Optional[float], actual: Any) -> bool:
    actual = _number(actual)
    if expected is None or actual is None:
        return True
    return abs(actual - expected) <= LINE_TOLERANCE


def extract_odds_from_event(
    odds_data: Any,
    market_type: str,
    selection: str,
    line: Optional[float] = None,
) -> Optional[int]:
    """Current American odds for a selection, or None when the feed has no usable price.

    Props are never extracted; they are priced again on submission.
    """
    if not isinstance(odds_data, dict):
        return None
    if isinstance(market_type, MarketType):
        market_type = market_type.value
    markets = odds_data.get("markets")
    if not isinstance(markets, dict):
        markets = odds_data

    market = markets.get(market_type)
    if not isinstance(market, dict):
        return None

    if market_type == MarketType.moneyline:
        odds = _number(market.get(selection))
    elif market_type in (MarketType.spread, MarketType.total):
        entry = market.get(selection)
        if isinstance(entry, dict):
            odds = _number(entry.get("odds"))
            entry_line = entry.get("line")
        else:
            # Flat totals shape: {"line": 8.5, "over": -110, "under": -110}
            odds = _number(entry)
            entry_line = market.get("line")
        if not _line_matches(line, entry_line):
            return None
    else:
        return None

    return int(odds) if odds is not None else None


async def validate_draft_picks(picks: list[dict]) -> list[dict]:
    """Report, per cached draft pick, whether its event is still open and whether odds moved. Read-only."""
    if len(picks) > settings.DRAFT_VALIDATION_MAX_PICKS:
        raise ValidationError(
            f"At most {settings.DRAFT_VALIDATION_MAX_PICKS} picks can be validated at once.",
            INVALID_PICK_COUNT,
        )
    events = await get_events_by_ids(p["event_id"] for p in picks)
    now = utcnow()

    results: list[dict] = []
    for pick in picks:
        market = pick["market_type"]
        market = market.value if isinstance(market, MarketType) else str(market)
        row = {
            "event_id": str(pick["event_id"]),
            "market_type": market,
            "selection": pick["selection"],
            "current_odds": pick["current_odds"],
            "odds_changed": False,
            "is_valid": False,
            "reason": None,
        }
        event = events.get(str(pick["event_id"]))
        status = event.get("status") if event else None
        scheduled_at = event.get("scheduled_at") if event else None

        if event is None:
            row["reason"] = "Event not found"
        elif status in (EventStatus.LIVE.value, EventStatus.COMPLETED.value):
            row["reason"] = "Event has already started"
        elif status in (EventStatus.CANCELED.value, EventStatus.POSTPONED.value):
            row["reason"] = f"Event has been {status.lower()}"
        elif scheduled_at is not None and ensure_utc(scheduled_at) <= now:
            row["reason"] = "Event has already started"
        else:
            row["is_valid"] = True
            current = extract_odds_from_event(
                event.get("odds_data"), market, pick["selection"], pick.get("line")
            )
            if current is not None:
                row["odds_changed"] = current != pick["current_odds"]
                row["current_odds"] = current
        results.append(row)
    return results


def slip_to_response(doc: dict) -> dict:
    """Convert a slips document to a response dict."""
    return {
        "id": str(doc["_id"]),
        "user_id": doc["user_id"],
        "name": doc.get("name"),
        "status": doc["status"],
        "picks": [dict(p) for p in doc.get("picks", [])],
        "total_picks": doc.get("total_picks", len(doc.get("picks", []))),
        "total_coin_cost": doc.get("total_coin_cost", 0),
        "min_coin_spend": doc.get("min_coin_spend", 0),
        "coin_spend_met": doc.get("coin_spend_met", False),
        "point_potential": doc.get("point_potential", 0),
        "total_odds": doc.get("total_odds", 1.0),
        "stake": doc.get("stake", 0.0),
        "potential_payout": doc.get("potential_payout", 0.0),
        "version": doc.get("version", 0),
        "locked_at": doc.get("locked_at"),
        "settled_at": doc.get("settled_at"),
        "created_at": doc.get("created_at"),
        "updated_at": doc.get("updated_at"),
    }
