"""Shared value types: coordinates, contacts and identity helpers."""

from datetime import datetime, timezone
from uuid import uuid4

from pydantic import BaseModel, EmailStr, Field


def utcnow() -> datetime:
    """Timezone-aware current UTC time."""
    return datetime.now(timezone.utc)


def new_id() -> str:
    """Generate a fresh entity identity."""
    return uuid4().hex


class Location(BaseModel):
    """Geographic location."""

    lat: float = Field(ge=-90, le=90)
    lng: float = Field(ge=-180, le=180)


class ContactInfo(BaseModel):
    """Customer contact details; the email is the ownership key for live updates."""

    name: str
    email: EmailStr
    phone: str

    @property
    def ownership_key(self) -> str:
        return self.email.lower()


def as_utc(value: datetime) -> datetime:
    """Treat naive datetimes as UTC and convert aware ones to UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)
