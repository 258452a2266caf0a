from __future__ import annotations

from datetime import datetime
from typing import Any
from uuid import UUID

from pydantic import BaseModel


class AuditLogRead(BaseModel):
    id: UUID
    actor_id: UUID | None
    actor_email: str | None
    actor_name: str | None
    actor_roles: list[str]
    action: str
    entity_type: str
    entity_id: str | None
    before: dict[str, Any] | None
    after: dict[str, Any] | None
    meta: dict[str, Any]
    ip_address: str | None
    user_agent: str | None
    channel: str
    request_id: str | None
    created_at: datetime

    class Config:
        from_attributes = True
