"""Discord channel routing.

Holds the canonical `ChannelRouter` describing where link requests and
teleport triggers are posted.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from ...config import Settings


@dataclass(frozen=True)
class ChannelRouter:
    """Configures which Discord channels receive automated posts."""

    admin: Optional[int]
    teleport: Optional[int]

    @staticmethod
    def from_settings(settings: Settings) -> "ChannelRouter":
        return ChannelRouter(
            admin=settings.admin_channel_id,
            teleport=settings.teleport_channel_id,
        )
