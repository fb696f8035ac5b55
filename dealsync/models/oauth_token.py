"""
Google OAuth2 token model.
"""

import uuid
from datetime import datetime
from typing import Optional

from sqlalchemy import String, Text, DateTime, Index, Uuid, func
from sqlalchemy.orm import Mapped, mapped_column

from dealsync.database import Base
from dealsync.models.types import JSONType


class OAuthToken(Base):
    """Encrypted OAuth2 credentials for one Google account and service."""

    __tablename__ = "google_oauth_tokens"

    id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        primary_key=True,
        default=uuid.uuid4,
    )
    user_id: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    account_email: Mapped[str] = mapped_column(String(255), nullable=False)

    # Both tokens are stored encrypted (see core.token_encryption)
    access_token: Mapped[str] = mapped_column(Text, nullable=False)
    refresh_token: Mapped[str] = mapped_column(Text, nullable=False)
    token_expiry: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
    )
    scopes: Mapped[list] = mapped_column(JSONType, default=list)
    service_type: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
    )  # gmail, drive

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        onupdate=func.now(),
    )
    revoked_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )

    __table_args__ = (
        Index(
            "idx_oauth_token_unique",
            "user_id",
            "account_email",
            "service_type",
            unique=True,
        ),
    )

    @property
    def is_revoked(self) -> bool:
        return self.revoked_at is not None
