"""
Presigned URL (capability) model.

A capability is a time-limited, scoped URL authorizing exactly one remote
storage operation. After ``expires_at`` the backend rejects it.
"""
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Optional


@dataclass
class PresignedURL:
    """
    Presigned URL with metadata
    """
    url: str
    key: str
    method: str  # GET, PUT
    expires_in_seconds: int
    created_at: datetime
    expires_at: datetime
    part_number: Optional[int] = None

    @classmethod
    def issued_now(
        cls,
        url: str,
        key: str,
        method: str,
        expires: timedelta,
        part_number: Optional[int] = None,
    ) -> "PresignedURL":
        created_at = datetime.now(timezone.utc)
        return cls(
            url=url,
            key=key,
            method=method,
            expires_in_seconds=int(expires.total_seconds()),
            created_at=created_at,
            expires_at=created_at + expires,
            part_number=part_number,
        )
