from fastapi import FastAPI, HTTPException, Depends, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi import status
from pydantic import BaseModel, Field, field_validator
from typing import Optional, Literal
from datetime import datetime
from manager import EventStore
from database import Database
from auth import get_current_user, register_user, login_user
from errors import AppError, AuthenticationError, StorageError, status_for
from utils import is_valid_email
import logging
import time
from contextlib import asynccontextmanager

from dotenv import load_dotenv
import os

load_dotenv()  # Load variables from .env file
DATABASE_PATH = os.getenv("DATABASE_PATH", "app.db")
EVENTS_FILE = os.getenv("EVENTS_FILE", "events.json")
EVENT_LOG_FILE = os.getenv("EVENT_LOG_FILE", "event.log")
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
CORS_ORIGINS = [o.strip() for o in os.getenv("CORS_ORIGINS", "http://localhost:3000").split(",") if o.strip()]

# Logging
logging.basicConfig(level=LOG_LEVEL)
logger = logging.getLogger(__name__)

# Database and event store
db = Database(DATABASE_PATH)
store = EventStore(EVENTS_FILE)

def get_db() -> Database:
    return db

def get_store() -> EventStore:
    return store

def configure_audit_log(path: str):
    """Send event audit lines to a file in addition to the root handlers."""
    audit_logger = logging.getLogger("event_audit")
    handler = logging.FileHandler(path, encoding="utf-8")
    handler.setFormatter(logging.Formatter("%(asctime)s - %(message)s"))
    audit_logger.addHandler(handler)
    audit_logger.setLevel(logging.INFO)
    return handler

# FastAPI App
@asynccontextmanager
async def lifespan(app: FastAPI):
    handler = configure_audit_log(EVENT_LOG_FILE) if EVENT_LOG_FILE else None
    store.load_events_from_file()
    yield
    logger.info("Closing database connection")
    db.close()
    if handler:
        logging.getLogger("event_audit").removeHandler(handler)
        handler.close()

app = FastAPI(lifespan=lifespan)

# CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

@app.middleware("http")
async def log_requests(request: Request, call_next):
    started = time.perf_counter()
    response = await call_next(request)
    elapsed_ms = (time.perf_counter() - started) * 1000
    logger.info(f"{request.method} {request.url.path} {response.status_code} - {elapsed_ms:.1f} ms")
    return response

# -------------------------------
# Error handlers
# -------------------------------
@app.exception_handler(AppError)
async def app_error_handler(request: Request, exc: AppError):
    headers = None
    if isinstance(exc, AuthenticationError):
        headers = {"WWW-Authenticate": "Bearer"}
    if isinstance(exc, StorageError):
        logger.error(f"Storage failure on {request.method} {request.url.path}: {exc.__cause__!r}")
    return JSONResponse(status_code=status_for(exc), content={"detail": exc.detail}, headers=headers)

@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError):
    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content={"detail": "Validation failed", "errors": jsonable_encoder(exc.errors())},
    )

# -------------------------------
# Schemas
# -------------------------------
class UserRegister(BaseModel):
    username: str = Field(min_length=3)
    password: str = Field(min_length=5)
    email: Optional[str] = None

    @field_validator("email")
    @classmethod
    def check_email(cls, value):
        if value is not None and not is_valid_email(value):
            raise ValueError("Invalid email address")
        return value

    class Config:
        json_schema_extra = {
            "example": {"username": "alice", "password": "pass1234", "email": "alice@example.com"}
        }

class UserLogin(BaseModel):
    username: str
    password: str

class EventCreate(BaseModel):
    title: str
    start: datetime
    end: datetime
    description: Optional[str] = None

    class Config:
        json_schema_extra = {
            "example": {
                "title": "Project Meeting",
                "start": "2025-05-01T10:00:00",
                "end": "2025-05-01T11:00:00",
                "description": "Discuss project milestones"
            }
        }

class EventUpdate(BaseModel):
    title: Optional[str] = None
    start: Optional[datetime] = None
    end: Optional[datetime] = None
    description: Optional[str] = None

# -------------------------------
# Auth Routes
# -------------------------------
@app.get("/ping", summary="Health check")
def ping():
    return {"status": "Healthy"}

@app.post("/register", response_model=dict, summary="Register a new user")
def register(user: UserRegister, db: Database = Depends(get_db)):
    """Register a new user; the password is stored as a bcrypt hash."""
    return register_user(db, user.username, user.password, user.email)

@app.post("/login", response_model=dict, summary="Login and receive an access token")
def login(user: UserLogin, db: Database = Depends(get_db)):
    """Authenticate user and return a bearer token valid for one hour."""
    return login_user(db, user.username, user.password)

@app.get("/protected", response_model=dict, summary="Protected route probe")
def protected(current_user=Depends(get_current_user)):
    return {"message": "This is a protected route", "user": current_user}

# -------------------------------
# Event Routes
# -------------------------------
@app.get("/events", response_model=dict, summary="List, search and sort events")
def list_events(
    q: Optional[str] = None,
    sort: Optional[Literal["start", "created"]] = None,
    order: Literal["asc", "desc"] = "asc",
    current_user=Depends(get_current_user),
    store: EventStore = Depends(get_store),
):
    """Retrieve events, optionally filtered by title and ordered by start or creation time."""
    events = store.search_events_by_title(q) if q else store.list_events()
    if sort:
        ascending = order == "asc"
        if sort == "start":
            ordered = store.sort_events_by_start_time(ascending)
        else:
            ordered = store.sort_events_by_creation_time(ascending)
        keep = {e.id for e in events}
        events = [e for e in ordered if e.id in keep]
    return {"message": "Events retrieved", "data": [e.to_dict() for e in events]}

@app.post("/events", response_model=dict, status_code=status.HTTP_201_CREATED, summary="Create a new event")
def create_event(event: EventCreate, current_user=Depends(get_current_user), store: EventStore = Depends(get_store)):
    evt = store.add_event(event.model_dump())
    logger.info(f"Event {evt.id} created by {current_user['username']}")
    return {"message": "Event created", "data": evt.to_dict()}

@app.post("/events/save", response_model=dict, summary="Persist events to the events file")
def save_events(current_user=Depends(get_current_user), store: EventStore = Depends(get_store)):
    store.save_events_to_file()
    return {"status": "Events saved", "count": len(store)}

@app.get("/events/{event_id}", response_model=dict, summary="Get an event by id")
def get_event(event_id: int, current_user=Depends(get_current_user), store: EventStore = Depends(get_store)):
    evt = store.get_event_by_id(event_id)
    if not evt:
        raise HTTPException(status_code=404, detail="Event not found")
    return {"message": "Event retrieved", "data": evt.to_dict()}

@app.put("/events/{event_id}", response_model=dict, summary="Update an event")
def update_event(event_id: int, event: EventUpdate, current_user=Depends(get_current_user), store: EventStore = Depends(get_store)):
    """Update the provided fields of an existing event."""
    evt = store.update_event(event_id, event.model_dump(exclude_unset=True))
    if evt is None:
        raise HTTPException(status_code=404, detail="Event not found")
    logger.info(f"Event {event_id} updated by {current_user['username']}")
    return {"message": f"Event {event_id} updated", "data": evt.to_dict()}

@app.delete("/events/{event_id}", response_model=dict, summary="Delete an event")
def delete_event(event_id: int, current_user=Depends(get_current_user), store: EventStore = Depends(get_store)):
    if not store.delete_event(event_id):
        raise HTTPException(status_code=404, detail="Event not found")
    logger.info(f"Event {event_id} deleted by {current_user['username']}")
    return {"message": f"Event {event_id} deleted", "data": {}}
