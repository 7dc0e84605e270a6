from fastapi import APIRouter, Depends, HTTPException, Response, status

from event_admission.core.deps import get_facade
from event_admission.schemas.registrations import (
    CancellationOut,
    OrganizerRequest,
    RegisteredOut,
    RegisterRequest,
    RegistrationOut,
    WaitlistedOut,
    WaitlistEntryOut,
)
from event_admission.services.errors import AdmissionError
from event_admission.services.facade import EventsFacade

router = APIRouter(tags=["registrations"])


@router.post(
    "/events/{event_id}/registrations",
    response_model=RegisteredOut | WaitlistedOut,
    status_code=status.HTTP_201_CREATED,
)
def register(
    event_id: int,
    payload: RegisterRequest,
    response: Response,
    facade: EventsFacade = Depends(get_facade),
):
    try:
        result = facade.register(event_id, payload.user_id, payload.attendee_count, payload.notes)
    except AdmissionError as e:
        raise HTTPException(status_code=e.status_code, detail=e.detail)

    if result.is_registered:
        return RegisteredOut(registration=RegistrationOut.model_validate(result.registration))
    # A full event queues the request; the seat is not granted yet.
    response.status_code = status.HTTP_202_ACCEPTED
    return WaitlistedOut(entry=WaitlistEntryOut.model_validate(result.entry))


@router.delete("/events/{event_id}/registrations/{user_id}", response_model=CancellationOut)
def cancel_registration(event_id: int, user_id: int, facade: EventsFacade = Depends(get_facade)):
    try:
        outcome = facade.cancel_registration(user_id, event_id)
    except AdmissionError as e:
        raise HTTPException(status_code=e.status_code, detail=e.detail)
    return CancellationOut(
        registration=RegistrationOut.model_validate(outcome.registration),
        total_registrations=outcome.total_registrations,
        available_seats=outcome.available_seats,
        promoted=WaitlistEntryOut.model_validate(outcome.promoted) if outcome.promoted else None,
    )


@router.post("/events/{event_id}/registrations/{registration_id}/confirm", response_model=RegistrationOut)
def confirm_registration(
    event_id: int,
    registration_id: int,
    payload: OrganizerRequest,
    facade: EventsFacade = Depends(get_facade),
):
    try:
        return facade.confirm_registration(payload.organizer_id, event_id, registration_id)
    except AdmissionError as e:
        raise HTTPException(status_code=e.status_code, detail=e.detail)


@router.post("/events/{event_id}/registrations/{registration_id}/check-in", response_model=RegistrationOut)
def check_in(
    event_id: int,
    registration_id: int,
    payload: OrganizerRequest,
    facade: EventsFacade = Depends(get_facade),
):
    try:
        return facade.check_in(payload.organizer_id, event_id, registration_id)
    except AdmissionError as e:
        raise HTTPException(status_code=e.status_code, detail=e.detail)


@router.get("/events/{event_id}/registrations", response_model=list[RegistrationOut])
def event_registrations(event_id: int, organizer_id: int, facade: EventsFacade = Depends(get_facade)):
    try:
        return facade.event_registrations(organizer_id, event_id)
    except AdmissionError as e:
        raise HTTPException(status_code=e.status_code, detail=e.detail)


@router.get("/users/{user_id}/registrations", response_model=list[RegistrationOut])
def my_registrations(user_id: int, facade: EventsFacade = Depends(get_facade)):
    return facade.my_registrations(user_id)
