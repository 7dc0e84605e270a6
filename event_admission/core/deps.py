from fastapi import Depends
from sqlalchemy.orm import Session

from event_admission.database.db import get_db
from event_admission.services.facade import EventsFacade


def get_facade(db: Session = Depends(get_db)) -> EventsFacade:
    return EventsFacade(db)
