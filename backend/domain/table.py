"""Venue tables, used only to name bills and pick merge targets."""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime

from .clock import utcnow


@dataclass
class VenueTable:
    table_id: str
    number: str
    name: str = ""
    organization_id: str = "default"
    created_at: datetime = field(default_factory=utcnow)

    @property
    def display_name(self) -> str:
        return self.name or f"Table {self.number}"
