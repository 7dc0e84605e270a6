from fastapi import APIRouter, Depends, HTTPException

from event_admission.core.deps import get_facade
from event_admission.schemas.events import EventStatsOut, ExpiredOffersOut
from event_admission.schemas.registrations import WaitlistPositionOut
from event_admission.services.errors import AdmissionError
from event_admission.services.facade import EventsFacade

router = APIRouter(prefix="/events", tags=["events"])


@router.get("/{event_id}/stats", response_model=EventStatsOut)
def event_stats(event_id: int, facade: EventsFacade = Depends(get_facade)):
    try:
        return facade.event_stats(event_id)
    except AdmissionError as e:
        raise HTTPException(status_code=e.status_code, detail=e.detail)


@router.get("/{event_id}/waitlist/{user_id}", response_model=WaitlistPositionOut)
def waitlist_position(event_id: int, user_id: int, facade: EventsFacade = Depends(get_facade)):
    try:
        return facade.waitlist_position(user_id, event_id)
    except AdmissionError as e:
        raise HTTPException(status_code=e.status_code, detail=e.detail)


@router.post("/waitlist/expire", response_model=ExpiredOffersOut)
def expire_waitlist_offers(event_id: int | None = None, facade: EventsFacade = Depends(get_facade)):
    """Run the waitlist expiry sweep now instead of waiting for the beat schedule."""
    try:
        expired = facade.expire_waitlist_offers(event_id=event_id)
    except AdmissionError as e:
        raise HTTPException(status_code=e.status_code, detail=e.detail)
    return {"expired": len(expired)}
