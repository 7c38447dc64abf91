"""Sports event lookups for pick validation (events are owned by the score feed)."""

import logging

from bson import ObjectId

import pointlock.database as _db
from pointlock.errors import (
    EVENT_ALREADY_STARTED,
    EVENT_NOT_FOUND,
    BadRequestError,
    NotFoundError,
)
from pointlock.models.slip import EventStatus
from pointlock.utils import ensure_utc, utcnow

logger = logging.getLogger("pointlock.event_service")


async def get_events_by_ids(event_ids) -> dict[str, dict]:
    """Fetch events for a set of ids in one query, keyed by string id."""
    ids = list(dict.fromkeys(str(eid) for eid in event_ids))
    if not ids:
        return {}
    # Feed events are keyed by ObjectId; string-keyed ids still match as-is.
    lookup: list = [ObjectId(eid) for eid in ids if ObjectId.is_valid(eid)]
    lookup.extend(ids)
    events = await _db.db.sports_events.find(
        {"_id": {"$in": lookup}},
        {"status": 1, "scheduled_at": 1, "odds_data": 1},
    ).to_list(length=len(lookup))
    return {str(e["_id"]): e for e in events}


def is_event_open(event: dict) -> bool:
    """Open for picks: still SCHEDULED and the start time lies in the future."""
    if event.get("status") != EventStatus.SCHEDULED.value:
        return False
    scheduled_at = event.get("scheduled_at")
    if scheduled_at is None:
        return False
    return ensure_utc(scheduled_at) > utcnow()


async def ensure_events_open(event_ids) -> dict[str, dict]:
    """Return the referenced events, raising if any is missing or no longer open."""
    ids = list(dict.fromkeys(str(eid) for eid in event_ids))
    events = await get_events_by_ids(ids)
    for event_id in ids:
        event = events.get(event_id)
        if event is None:
            raise NotFoundError(f"Event {event_id} not found.", EVENT_NOT_FOUND, event_id=event_id)
        if not is_event_open(event):
            logger.info("Pick rejected on closed event: event=%s status=%s", event_id, event.get("status"))
            raise BadRequestError(
                f"Event {event_id} has already started or is not open for picks.",
                EVENT_ALREADY_STARTED,
                event_id=event_id,
            )
    return events
