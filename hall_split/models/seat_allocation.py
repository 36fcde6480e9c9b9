from __future__ import annotations

from dataclasses import dataclass, field, replace
from datetime import datetime
from typing import Any

from .input_record import InputRecord, MasterRow

"""Seat allocation row models.

SeatAllocationUploadRow is the save shape handed to the session store;
SeatAllocationRow is the load shape returned by it (identity, scoping and
audit columns assigned by the store).

Both keep waiting_hall_quantity + token_quantity == quantity. The split is
only ever changed through with_waiting_hall(), which derives the token side.
"""

__all__ = [
    "SeatAllocationUploadRow",
    "SeatAllocationRow",
    "clamp_waiting",
]


def clamp_waiting(waiting: int, quantity: int) -> int:
    """Clamp a waiting hall value into [0, quantity]."""
    return max(0, min(quantity, waiting))


@dataclass(frozen=True)
class SeatAllocationUploadRow:
    """Row to be written by a replace-all (no identity yet)."""
    application_number: str
    beneficiary_name: str
    district: str
    requested_item: str
    quantity: int
    waiting_hall_quantity: int
    token_quantity: int
    beneficiary_type: str = ""
    item_type: str = ""
    comments: str = ""
    master_row: MasterRow = field(default_factory=dict)
    master_headers: list[str] = field(default_factory=list)
    sort_order: int | None = None

    @classmethod
    def from_record(
        cls,
        record: InputRecord,
        master_row: MasterRow,
        master_headers: list[str],
        sort_order: int | None = None,
    ) -> SeatAllocationUploadRow:
        """Build a fresh upload row; new rows start with every unit on token."""
        return cls(
            application_number=record.application_number,
            beneficiary_name=record.beneficiary_name,
            district=record.district,
            requested_item=record.requested_item,
            quantity=record.quantity,
            waiting_hall_quantity=0,
            token_quantity=record.quantity,
            beneficiary_type=record.beneficiary_type,
            item_type=record.item_type,
            comments=record.comments,
            master_row=dict(master_row),
            master_headers=list(master_headers),
            sort_order=sort_order,
        )


@dataclass(frozen=True)
class SeatAllocationRow:
    """Persisted seat allocation row as read back from the store."""
    id: str
    session_name: str
    source_file_name: str | None
    application_number: str
    beneficiary_name: str
    district: str
    requested_item: str
    quantity: int
    waiting_hall_quantity: int
    token_quantity: int
    beneficiary_type: str = ""
    item_type: str = ""
    comments: str = ""
    master_row: MasterRow = field(default_factory=dict)
    master_headers: list[str] = field(default_factory=list)
    sort_order: int | None = None
    created_by: str | None = None
    updated_by: str | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None

    @classmethod
    def from_mapping(cls, data: dict[str, Any]) -> SeatAllocationRow:
        """Build from a DB row dict, coercing NULLs the way the UI layer expects."""
        return cls(
            id=str(data["id"]),
            session_name=data.get("session_name") or "",
            source_file_name=data.get("source_file_name"),
            application_number=data.get("application_number") or "",
            beneficiary_name=data.get("beneficiary_name") or "",
            district=data.get("district") or "",
            requested_item=data.get("requested_item") or "",
            quantity=int(data.get("quantity") or 0),
            waiting_hall_quantity=int(data.get("waiting_hall_quantity") or 0),
            token_quantity=int(data.get("token_quantity") or 0),
            beneficiary_type=data.get("beneficiary_type") or "",
            item_type=data.get("item_type") or "",
            comments=data.get("comments") or "",
            master_row=dict(data.get("master_row") or {}),
            master_headers=list(data.get("master_headers") or []),
            sort_order=data.get("sort_order"),
            created_by=data.get("created_by"),
            updated_by=data.get("updated_by"),
            created_at=data.get("created_at"),
            updated_at=data.get("updated_at"),
        )

    def with_waiting_hall(self, waiting: int) -> SeatAllocationRow:
        """Return a copy with waiting hall clamped to [0, quantity] and token derived."""
        bounded = clamp_waiting(waiting, self.quantity)
        return replace(self, waiting_hall_quantity=bounded, token_quantity=self.quantity - bounded)

    def to_upload_row(self) -> SeatAllocationUploadRow:
        return SeatAllocationUploadRow(
            application_number=self.application_number,
            beneficiary_name=self.beneficiary_name,
            district=self.district,
            requested_item=self.requested_item,
            quantity=self.quantity,
            waiting_hall_quantity=self.waiting_hall_quantity,
            token_quantity=self.token_quantity,
            beneficiary_type=self.beneficiary_type,
            item_type=self.item_type,
            comments=self.comments,
            master_row=dict(self.master_row),
            master_headers=list(self.master_headers),
            sort_order=self.sort_order,
        )
