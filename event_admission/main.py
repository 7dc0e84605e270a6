from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from event_admission import models  # noqa: F401
from event_admission.core.logging import setup_logging
from event_admission.core.settings import settings
from event_admission.database.db import Base, engine
from event_admission.routes import events, registrations

setup_logging()

app = FastAPI(title="Event Admission")

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Create all tables (in production, use migrations such as Alembic)
Base.metadata.create_all(bind=engine)

# Include the routers
app.include_router(registrations.router)
app.include_router(events.router)
