"""
Client (CL) schemas.

Clients are owned by the client-management collaborator; the engine only needs
a minimal create/read surface to be usable end to end.
"""
from __future__ import annotations

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, Field, ConfigDict, field_validator

from backend.app.db.models import ClientStatus, Client
from backend.app.utils.datetime_utils import as_utc


class CLCreateItem(BaseModel):
    model_config = ConfigDict(extra="forbid", str_strip_whitespace=True)

    name: str = Field(..., min_length=1, max_length=200)
    email: str = Field(..., min_length=3, max_length=254)
    document: Optional[str] = Field(default=None, max_length=50)
    phone_number: Optional[str] = Field(default=None, max_length=50)
    status: ClientStatus = ClientStatus.ACTIVE
    notes: Optional[str] = None

    @field_validator("email")
    @classmethod
    def _check_email(cls, v: str) -> str:
        if "@" not in v or v.startswith("@") or v.endswith("@"):
            raise ValueError("Invalid email address")
        return v.lower()


class CLStatusItem(BaseModel):
    model_config = ConfigDict(extra="forbid")

    status: ClientStatus


class CLReadItem(BaseModel):
    id: int
    name: str
    email: str
    document: Optional[str] = None
    phone_number: Optional[str] = None
    status: ClientStatus
    notes: Optional[str] = None
    created_at: Optional[datetime] = None

    @classmethod
    def from_db_model(cls, client: Client) -> 'CLReadItem':
        return cls(
            id=client.id,
            name=client.name,
            email=client.email,
            document=client.document,
            phone_number=client.phone_number,
            status=client.status,
            notes=client.notes,
            created_at=as_utc(client.created_at),
            )
