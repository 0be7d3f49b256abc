from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime


@dataclass(slots=True)
class Account:
    """Aggregate root for a registered end user."""

    account_id: str
    display_name: str
    username: str
    email: str
    external_identity_id: str
    created_at: datetime
    updated_at: datetime
    picture_url: str = ""
    blocked: bool = False
    deleted_at: datetime | None = None

    @property
    def trashed(self) -> bool:
        return self.deleted_at is not None
