from __future__ import annotations

from sqlmodel import SQLModel, Field


class Lab(SQLModel, table=True):
    """Read-only view of the lab a standup belongs to (owned by the CRUD layer)."""

    id: str = Field(primary_key=True)
    name: str
