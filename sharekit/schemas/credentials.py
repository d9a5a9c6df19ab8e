"""Pydantic schemas for stored credentials"""
from datetime import datetime, timezone
from typing import Optional, Set

from pydantic import BaseModel, Field, field_validator, model_validator


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class CredentialRecord(BaseModel):
    """OAuth credentials for one X account (plaintext form, encrypted at rest)"""
    user_id: str
    username: str
    access_token: str = Field(min_length=1)
    refresh_token: Optional[str] = None
    scope: Optional[Set[str]] = None
    expires_at: Optional[datetime] = None
    created_at: datetime = Field(default_factory=utcnow)

    @field_validator("expires_at", "created_at")
    @classmethod
    def ensure_aware(cls, v):
        # Naive datetimes are treated as UTC so comparisons never mix kinds
        if v is not None and v.tzinfo is None:
            return v.replace(tzinfo=timezone.utc)
        return v

    @model_validator(mode="after")
    def check_expiry_after_creation(self):
        if self.expires_at is not None and self.expires_at <= self.created_at:
            raise ValueError("expires_at must be after created_at")
        return self

    def is_expired(self, now: Optional[datetime] = None) -> bool:
        if self.expires_at is None:
            return False
        return self.expires_at <= (now or utcnow())

    def seconds_until_expiry(self, now: Optional[datetime] = None) -> Optional[float]:
        if self.expires_at is None:
            return None
        return (self.expires_at - (now or utcnow())).total_seconds()


class StoredTokenEntry(BaseModel):
    """Shape persisted under tokens:{userId}"""
    ciphertext: str
    iv: str
    authTag: str
    userId: str
    username: str
    createdAt: datetime


class PKCEEntry(BaseModel):
    """Shape persisted under pkce:{state}"""
    codeVerifier: str
    createdAt: datetime


class BrowserSessionData(BaseModel):
    """Shape persisted under session:{sessionId}"""
    oauthState: Optional[str] = None
    userId: Optional[str] = None
    createdAt: datetime = Field(default_factory=utcnow)
