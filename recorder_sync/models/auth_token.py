"""Stored Freesound OAuth token model."""

from sqlalchemy import Column, Integer, String, DateTime
from recorder_sync.database.database import Base
from recorder_sync.models.recording import utcnow


class AuthToken(Base):
    """Encrypted OAuth tokens for the signed-in Freesound user (single row)."""

    __tablename__ = "auth_tokens"

    id = Column(Integer, primary_key=True, index=True)
    access_token_encrypted = Column(String, nullable=False)
    refresh_token_encrypted = Column(String, nullable=True)
    expires_at = Column(DateTime, nullable=True)
    username = Column(String, nullable=True)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)
