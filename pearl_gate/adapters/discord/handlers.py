"""Discord message helpers and the link request presenter."""

from __future__ import annotations

import logging
from typing import Iterable, Optional

import discord
from discord.ext import commands

from ...config import ConfigurationMissing
from ...models import LinkRequest
from .builders import build_request_embed, build_request_view

logger = logging.getLogger(__name__)


class PresentationError(RuntimeError):
    """Raised when a request message cannot be sent to the admin channel."""


async def _resolve_channel(bot: commands.Bot, channel_id: int):
    channel = bot.get_channel(channel_id)
    if channel is not None:
        return channel
    try:
        return await bot.fetch_channel(channel_id)
    except discord.HTTPException as exc:
        logger.warning("Failed to fetch channel %s: %s", channel_id, exc)
        return None


async def _post_to_channel(
    bot: commands.Bot,
    channel_id: Optional[int],
    content: str,
    *,
    purpose: str,
) -> bool:
    """Send content to a configured channel if possible."""

    if channel_id is None:
        logger.warning("Skipping %s post; channel not configured", purpose)
        return False
    channel = await _resolve_channel(bot, channel_id)
    if channel is None:
        logger.warning("Failed to locate %s channel with id %s", purpose, channel_id)
        return False
    try:
        await channel.send(content)
    except discord.HTTPException:
        logger.exception("Failed to send %s message", purpose)
        return False
    return True


_MAX_MESSAGE_LENGTH = 1900


def _clamp_text(text: str) -> str:
    """Ensure Discord-compatible message length."""

    if len(text) <= _MAX_MESSAGE_LENGTH:
        return text
    return text[: _MAX_MESSAGE_LENGTH - 1].rstrip() + "…"


def member_is_admin(member, admin_role_ids: Iterable[int]) -> bool:
    """Apply the resolution policy to a guild member.

    With admin roles configured, membership in one of them is required.
    Otherwise Administrator or Manage Server permission is accepted.
    """

    if member is None:
        return False
    role_ids = set(admin_role_ids)
    if role_ids:
        roles = getattr(member, "roles", None) or []
        return any(role.id in role_ids for role in roles)
    permissions = getattr(member, "guild_permissions", None)
    if permissions is None:
        return False
    return bool(permissions.administrator or permissions.manage_guild)


class RequestPresenter:
    """Renders link requests as admin channel messages with buttons."""

    def __init__(self, bot: commands.Bot, channel_id: Optional[int]) -> None:
        self._bot = bot
        self._channel_id = channel_id

    @property
    def channel_id(self) -> Optional[int]:
        return self._channel_id

    async def _channel(self):
        if self._channel_id is None:
            raise ConfigurationMissing("Admin channel is not configured on the bot. Contact the bot owner.")
        channel = await _resolve_channel(self._bot, self._channel_id)
        if channel is None or not hasattr(channel, "send"):
            logger.warning("Admin channel not found or not a text channel: %s", self._channel_id)
            raise PresentationError("Admin channel not found or not a text channel. Contact the bot owner.")
        return channel

    async def render(self, request: LinkRequest) -> int:
        channel = await self._channel()
        view = build_request_view(request)
        try:
            message = await channel.send(embed=build_request_embed(request), view=view)
        except discord.HTTPException as exc:
            logger.error("Failed to send admin message for request %s: %s", request.id, exc)
            raise PresentationError("Could not post the request to the admin channel.") from exc
        finally:
            # Button clicks are routed through on_interaction, not the view store.
            view.stop()
        logger.info("Sent admin message for request %s messageId=%s", request.id, message.id)
        return message.id

    async def is_live(self, presentation_ref: int) -> bool:
        try:
            channel = await self._channel()
        except (ConfigurationMissing, PresentationError):
            return False
        try:
            await channel.fetch_message(presentation_ref)
        except discord.NotFound:
            return False
        except discord.HTTPException as exc:
            logger.warning("Could not fetch message %s: %s", presentation_ref, exc)
            return False
        return True

    async def update_to_terminal(self, presentation_ref: Optional[int], request: LinkRequest) -> bool:
        """Show the outcome and disable both buttons; best-effort."""

        if presentation_ref is None:
            logger.warning("Request %s has no admin message to update", request.id)
            return False
        try:
            channel = await self._channel()
        except (ConfigurationMissing, PresentationError) as exc:
            logger.warning("Could not edit admin message for %s: %s", request.id, exc)
            return False
        view = build_request_view(request, disabled=True)
        try:
            await channel.get_partial_message(presentation_ref).edit(
                embed=build_request_embed(request),
                view=view,
            )
        except discord.HTTPException as exc:
            logger.warning("Could not edit admin message for %s: %s", request.id, exc)
            return False
        finally:
            view.stop()
        return True


__all__ = [
    "PresentationError",
    "RequestPresenter",
    "_clamp_text",
    "_post_to_channel",
    "member_is_admin",
]
