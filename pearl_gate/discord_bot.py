"""Discord bot entry point for Pearl Gate."""
from __future__ import annotations

import asyncio
import logging
import signal
from typing import Iterable, Optional

import discord
from discord import app_commands
from discord.ext import commands
from dotenv import load_dotenv

from .action_log import configure_logging
from .adapters.discord.bot import ChannelRouter
from .adapters.discord.builders import parse_action
from .adapters.discord.handlers import (
    PresentationError,
    RequestPresenter,
    _clamp_text,
    _post_to_channel,
    member_is_admin,
)
from .config import ConfigurationMissing, Settings, SettingsLoader, require_token
from .models import Decision, LinkRequest, RequestStatus
from .service import AlreadyResolved, LinkError, LinkService
from .state import LinkStore
from .telemetry_decorator import track_command

logger = logging.getLogger(__name__)


SHUTTING_DOWN_MESSAGE = "The bot is restarting. Try again in a moment."


class LinkCommandTree(app_commands.CommandTree):
    """Command tree that refuses new commands once shutdown has started."""

    async def interaction_check(self, interaction: discord.Interaction) -> bool:
        if getattr(self.client, "shutting_down", False):
            await interaction.response.send_message(SHUTTING_DOWN_MESSAGE, ephemeral=True)
            return False
        return True


def _user_label(user) -> str:
    return str(user)


async def _reply(interaction: discord.Interaction, content: str) -> None:
    """Answer privately, whether or not the interaction was already acknowledged."""

    content = _clamp_text(content)
    if interaction.response.is_done():
        await interaction.followup.send(content, ephemeral=True)
    else:
        await interaction.response.send_message(content, ephemeral=True)


async def handle_link(
    interaction: discord.Interaction,
    service: LinkService,
    presenter: RequestPresenter,
    ign: str,
    account: Optional[discord.abc.User] = None,
) -> None:
    target = account or interaction.user
    try:
        request = service.create_request(
            requester_id=str(interaction.user.id),
            requester_label=_user_label(interaction.user),
            target_id=str(target.id),
            target_label=_user_label(target),
            ign=ign,
        )
    except LinkError as exc:
        await _reply(interaction, str(exc))
        return

    try:
        ref = await presenter.render(request)
    except (ConfigurationMissing, PresentationError) as exc:
        logger.warning("Link request %s saved without admin message: %s", request.id, exc)
        await _reply(interaction, str(exc))
        return
    try:
        service.attach_presentation(request.id, ref)
    except AlreadyResolved as exc:
        logger.info("Request %s was resolved before its message id was recorded", request.id)
        await presenter.update_to_terminal(ref, exc.request)
    await _reply(interaction, "Link request submitted to admins.")


async def handle_teleport(
    interaction: discord.Interaction,
    bot: commands.Bot,
    service: LinkService,
    router: ChannelRouter,
    admin_role_ids: Iterable[int],
    ign: str,
    account: Optional[discord.abc.User] = None,
) -> None:
    target = account or interaction.user
    try:
        trigger = service.request_teleport(
            caller_id=str(interaction.user.id),
            caller_is_admin=member_is_admin(interaction.user, admin_role_ids),
            target_account_id=str(target.id),
            ign=ign,
        )
    except LinkError as exc:
        await _reply(interaction, str(exc))
        return

    if router.teleport is None:
        logger.warning("Teleport channel not configured; dropped trigger for %s", ign.strip())
        await _reply(interaction, "Teleport channel is not configured on the bot. Contact the bot owner.")
        return
    if not await _post_to_channel(bot, router.teleport, trigger, purpose="teleport"):
        await _reply(interaction, "Could not send the teleport command. Try again later.")
        return
    await _reply(interaction, f"Teleport requested for {ign.strip()}.")


async def _disable_clicked_message(
    interaction: discord.Interaction,
    presenter: RequestPresenter,
    request: LinkRequest,
) -> None:
    """Disable a duplicate artifact left behind by an earlier re-render."""

    message = getattr(interaction, "message", None)
    if message is None or message.id == request.presentation_ref:
        return
    logger.info("Disabling stale message %s for request %s", message.id, request.id)
    await presenter.update_to_terminal(message.id, request)


async def handle_action(
    interaction: discord.Interaction,
    service: LinkService,
    presenter: RequestPresenter,
    admin_role_ids: Iterable[int],
    decision: Decision,
    request_id: str,
) -> None:
    try:
        request = service.resolve(
            request_id=request_id,
            resolver_id=str(interaction.user.id),
            decision=decision,
            resolver_is_authorized=member_is_admin(interaction.user, admin_role_ids),
        )
    except AlreadyResolved as exc:
        await _disable_clicked_message(interaction, presenter, exc.request)
        await _reply(interaction, str(exc))
        return
    except LinkError as exc:
        await _reply(interaction, str(exc))
        return

    await presenter.update_to_terminal(request.presentation_ref, request)
    await _disable_clicked_message(interaction, presenter, request)
    if request.status is RequestStatus.APPROVED:
        await _reply(interaction, f"Approved. {request.target_label} linked to IGN {request.ign}")
    else:
        await _reply(interaction, f"Rejected request for {request.target_label}.")


def build_bot(settings: Settings, intents: Optional[discord.Intents] = None) -> commands.Bot:
    intents = intents or discord.Intents.default()
    bot = commands.Bot(command_prefix="/", intents=intents, tree_cls=LinkCommandTree)
    service = LinkService(LinkStore(settings.data_dir), teleport_command=settings.teleport_command)
    setattr(bot, "link_service", service)
    router = ChannelRouter.from_settings(settings)
    presenter = RequestPresenter(bot, router.admin)
    admin_role_ids = settings.admin_role_ids
    restored = False

    if router.admin is None:
        logger.warning("Admin channel not configured; /link will report an error when used")

    @bot.event
    async def on_ready() -> None:
        nonlocal restored
        logger.info("Connected. Logged in as %s", bot.user)
        try:
            if settings.guild_id is not None:
                guild = discord.Object(id=settings.guild_id)
                bot.tree.copy_global_to(guild=guild)
                synced = await bot.tree.sync(guild=guild)
                logger.info("Synced %d commands to guild %s", len(synced), settings.guild_id)
            else:
                synced = await bot.tree.sync()
                logger.info("Synced %d commands globally (may take up to an hour)", len(synced))
        except discord.HTTPException as exc:
            logger.error("Failed to register commands: %s", exc)

        if restored or router.admin is None:
            return
        restored = True
        try:
            await service.reconcile_presentations(presenter)
        except Exception as exc:  # pragma: no cover - logging only
            logger.error("Failed to restore pending messages: %s", exc)

    @bot.event
    async def on_interaction(interaction: discord.Interaction) -> None:
        if interaction.type is not discord.InteractionType.component:
            return
        parsed = parse_action((interaction.data or {}).get("custom_id"))
        if parsed is None:
            return
        decision, request_id = parsed
        if getattr(bot, "shutting_down", False):
            await _reply(interaction, SHUTTING_DOWN_MESSAGE)
            return
        try:
            await handle_action(interaction, service, presenter, admin_role_ids, decision, request_id)
        except Exception as exc:
            logger.error("Interaction handler error: %s", exc, exc_info=True)
            if not interaction.response.is_done():
                await interaction.response.send_message(
                    "An error occurred handling that interaction.",
                    ephemeral=True,
                )

    @bot.tree.error
    async def on_app_command_error(
        interaction: discord.Interaction,
        error: app_commands.AppCommandError,
    ) -> None:
        logger.error("Command handler error: %s", error, exc_info=error)
        if not interaction.response.is_done():
            await interaction.response.send_message(
                "An error occurred handling that command.",
                ephemeral=True,
            )

    @app_commands.command(
        name="link",
        description="Request admin approval to link a Minecraft IGN to a Discord account",
    )
    @track_command
    @app_commands.describe(
        ign="Minecraft in-game name",
        account="Discord account to link (if different)",
    )
    async def link(
        interaction: discord.Interaction,
        ign: str,
        account: discord.User | None = None,
    ) -> None:
        await handle_link(interaction, service, presenter, ign, account)

    @app_commands.command(
        name="teleport",
        description="Send an instapearl teleport for a linked Minecraft IGN",
    )
    @track_command
    @app_commands.describe(
        ign="Linked Minecraft in-game name",
        account="Discord account the IGN is linked to (admins only)",
    )
    async def teleport(
        interaction: discord.Interaction,
        ign: str,
        account: discord.User | None = None,
    ) -> None:
        await handle_teleport(interaction, bot, service, router, admin_role_ids, ign, account)

    bot.tree.add_command(link)
    bot.tree.add_command(teleport)
    return bot


SHUTDOWN_GRACE_SECONDS = 10.0

_HANDLER_TASK_PREFIXES = ("discord.py: ", "CommandTree-invoker")


def _in_flight_handlers() -> set:
    """Event and command handler tasks dispatched by discord.py that are still running."""

    current = asyncio.current_task()
    return {
        task
        for task in asyncio.all_tasks()
        if task is not current
        and not task.done()
        and task.get_name().startswith(_HANDLER_TASK_PREFIXES)
    }


async def _drain_handlers(timeout: float) -> None:
    pending = _in_flight_handlers()
    if not pending:
        return
    logger.info("Waiting for %d in-flight handler(s) to finish", len(pending))
    _, still_running = await asyncio.wait(pending, timeout=timeout)
    if still_running:
        logger.warning(
            "%d handler(s) still running after %.0fs; shutting down anyway",
            len(still_running),
            timeout,
        )


async def _run(bot: commands.Bot, token: str, grace: float = SHUTDOWN_GRACE_SECONDS) -> None:
    stop_event = asyncio.Event()
    loop = asyncio.get_running_loop()
    installed = []
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, stop_event.set)
            installed.append(sig)
        except NotImplementedError:
            signal.signal(sig, lambda *_: loop.call_soon_threadsafe(stop_event.set))

    try:
        async with bot:
            runner = asyncio.create_task(bot.start(token))
            stopper = asyncio.create_task(stop_event.wait())
            done, _ = await asyncio.wait({runner, stopper}, return_when=asyncio.FIRST_COMPLETED)
            if runner in done:
                stopper.cancel()
                runner.result()
                return
            logger.info("Shutting down...")
            setattr(bot, "shutting_down", True)
            await _drain_handlers(grace)
            await bot.close()
            await runner
    finally:
        for sig in installed:
            loop.remove_signal_handler(sig)


def main() -> None:
    load_dotenv()
    settings = SettingsLoader().load()
    configure_logging(settings.log_file)
    try:
        token = require_token()
    except ConfigurationMissing as exc:
        logger.error("ERROR: %s", exc)
        raise SystemExit(1) from exc
    bot = build_bot(settings)
    try:
        asyncio.run(_run(bot, token))
    except discord.LoginFailure as exc:
        logger.error("Login failed: %s", exc)
        raise SystemExit(1) from exc


__all__ = ["build_bot", "handle_action", "handle_link", "handle_teleport", "main"]


if __name__ == "__main__":  # pragma: no cover
    main()
