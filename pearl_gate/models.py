"""Core data models for Pearl Gate."""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional


class RequestStatus(str, Enum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"

    @property
    def is_terminal(self) -> bool:
        return self is not RequestStatus.PENDING


class Decision(str, Enum):
    APPROVE = "approve"
    REJECT = "reject"

    @property
    def status(self) -> RequestStatus:
        if self is Decision.APPROVE:
            return RequestStatus.APPROVED
        return RequestStatus.REJECTED


def _parse_timestamp(value: Any) -> Optional[datetime]:
    """Accept ISO strings as well as millisecond epochs from older files."""

    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value
    if isinstance(value, (int, float)):
        return datetime.fromtimestamp(value / 1000, tz=timezone.utc)
    return datetime.fromisoformat(str(value))


def _format_timestamp(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value is not None else None


@dataclass
class LinkRequest:
    """A pending claim that an IGN belongs to a Discord account."""

    id: str
    requester_id: str
    requester_label: str
    target_id: str
    target_label: str
    ign: str
    status: RequestStatus = RequestStatus.PENDING
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    resolved_by: Optional[str] = None
    resolved_at: Optional[datetime] = None
    presentation_ref: Optional[int] = None

    @property
    def is_pending(self) -> bool:
        return self.status is RequestStatus.PENDING

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "requester_id": self.requester_id,
            "requester_label": self.requester_label,
            "target_id": self.target_id,
            "target_label": self.target_label,
            "ign": self.ign,
            "status": self.status.value,
            "created_at": _format_timestamp(self.created_at),
            "resolved_by": self.resolved_by,
            "resolved_at": _format_timestamp(self.resolved_at),
            "presentation_ref": self.presentation_ref,
        }

    @staticmethod
    def from_dict(data: Dict[str, Any]) -> "LinkRequest":
        requester_id = str(data["requester_id"] if "requester_id" in data else data["requesterId"])
        target_id = data.get("target_id") or data.get("targetId") or requester_id
        ref = data.get("presentation_ref", data.get("messageId"))
        resolved_by = data.get("resolved_by", data.get("resolvedBy"))
        return LinkRequest(
            id=str(data["id"]),
            requester_id=requester_id,
            requester_label=str(data.get("requester_label") or data.get("requesterTag") or requester_id),
            target_id=str(target_id),
            target_label=str(data.get("target_label") or data.get("targetTag") or target_id),
            ign=str(data["ign"]),
            status=RequestStatus(data.get("status", RequestStatus.PENDING.value)),
            created_at=_parse_timestamp(data.get("created_at", data.get("createdAt")))
            or datetime.now(timezone.utc),
            resolved_by=str(resolved_by) if resolved_by is not None else None,
            resolved_at=_parse_timestamp(data.get("resolved_at", data.get("resolvedAt"))),
            presentation_ref=int(ref) if ref not in (None, "") else None,
        )


@dataclass
class AccountLink:
    """Approved association between a Discord account and its IGNs."""

    account_id: str
    label: str
    igns: List[str] = field(default_factory=list)

    def add_ign(self, ign: str) -> bool:
        if ign in self.igns:
            return False
        self.igns.append(ign)
        return True

    def to_dict(self) -> Dict[str, Any]:
        return {"id": self.account_id, "label": self.label, "igns": list(self.igns)}

    @staticmethod
    def from_dict(account_id: str, data: Dict[str, Any]) -> "AccountLink":
        raw_igns = data.get("igns")
        if isinstance(raw_igns, str):
            raw_igns = [raw_igns]
        elif not isinstance(raw_igns, list):
            raw_igns = []
        igns: List[str] = []
        for raw in raw_igns:
            ign = str(raw)
            if ign not in igns:
                igns.append(ign)
        return AccountLink(
            account_id=str(account_id),
            label=str(data.get("label") or data.get("username") or account_id),
            igns=igns,
        )


__all__ = ["AccountLink", "Decision", "LinkRequest", "RequestStatus"]
