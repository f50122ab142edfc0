"""Discord adapter.

Builders for request embeds and buttons, the request presenter, and channel
routing.
"""

from __future__ import annotations

from .bot import ChannelRouter
from .builders import build_request_embed, build_request_view, parse_action
from .handlers import PresentationError, RequestPresenter, member_is_admin

__all__ = [
    "ChannelRouter",
    "PresentationError",
    "RequestPresenter",
    "build_request_embed",
    "build_request_view",
    "member_is_admin",
    "parse_action",
]
