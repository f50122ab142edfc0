"""Discord embed/view builders.

Pure-ish construction helpers for Discord UI objects. Keeping these in a
separate module makes them easy to unit test and reuse across handlers.
"""

from __future__ import annotations

import re
from typing import Optional, Tuple

import discord

from ...models import Decision, LinkRequest, RequestStatus

ACCEPT_PREFIX = "link_accept_"
REJECT_PREFIX = "link_reject_"

_ACTION_PATTERN = re.compile(r"^link_(accept|reject)_(.+)$")

_STATUS_COLOURS = {
    RequestStatus.PENDING: 0xFFAA00,
    RequestStatus.APPROVED: 0x22AA22,
    RequestStatus.REJECTED: 0xCC3333,
}


def action_custom_id(decision: Decision, request_id: str) -> str:
    prefix = ACCEPT_PREFIX if decision is Decision.APPROVE else REJECT_PREFIX
    return f"{prefix}{request_id}"


def parse_action(custom_id: Optional[str]) -> Optional[Tuple[Decision, str]]:
    """Recover the decision and request id from a button custom id."""

    if not custom_id:
        return None
    match = _ACTION_PATTERN.match(custom_id)
    if match is None:
        return None
    action, request_id = match.groups()
    decision = Decision.APPROVE if action == "accept" else Decision.REJECT
    return decision, request_id


def build_request_embed(request: LinkRequest) -> discord.Embed:
    """Construct the embed posted to the admin channel for ``request``."""

    status = request.status
    timestamp = request.created_at
    if status.is_terminal and request.resolved_at is not None:
        timestamp = request.resolved_at
    embed = discord.Embed(
        title="Link Request",
        colour=discord.Colour(_STATUS_COLOURS[status]),
        timestamp=timestamp,
    )
    embed.add_field(
        name="Requester",
        value=f"{request.requester_label} (<@{request.requester_id}>)",
        inline=True,
    )
    embed.add_field(
        name="Target",
        value=f"{request.target_label} (<@{request.target_id}>)",
        inline=True,
    )
    embed.add_field(name="IGN", value=f"`{request.ign}`", inline=False)
    if status is RequestStatus.APPROVED and request.resolved_by:
        embed.add_field(name="Decision", value=f"✅ Approved by <@{request.resolved_by}>", inline=False)
    elif status is RequestStatus.REJECTED and request.resolved_by:
        embed.add_field(name="Decision", value=f"❌ Rejected by <@{request.resolved_by}>", inline=False)
    embed.set_footer(text=f"Request ID: {request.id}")
    return embed


def build_request_view(request: LinkRequest, *, disabled: bool = False) -> discord.ui.View:
    """Approve/Reject buttons tagged with the request id.

    Terminal requests always get disabled buttons. Must be called from a
    running event loop.
    """

    disabled = disabled or request.status.is_terminal
    view = discord.ui.View(timeout=None)
    view.add_item(
        discord.ui.Button(
            style=discord.ButtonStyle.success,
            label="Approve",
            emoji="✅",
            custom_id=action_custom_id(Decision.APPROVE, request.id),
            disabled=disabled,
        )
    )
    view.add_item(
        discord.ui.Button(
            style=discord.ButtonStyle.danger,
            label="Reject",
            emoji="❌",
            custom_id=action_custom_id(Decision.REJECT, request.id),
            disabled=disabled,
        )
    )
    return view


__all__ = [
    "ACCEPT_PREFIX",
    "REJECT_PREFIX",
    "action_custom_id",
    "build_request_embed",
    "build_request_view",
    "parse_action",
]
