"""Link request lifecycle: creation, resolution and account linking."""
from __future__ import annotations

import logging
import secrets
import threading
import time
from datetime import datetime, timezone
from typing import Dict, List, Optional, Protocol

from .models import AccountLink, Decision, LinkRequest, RequestStatus
from .state import ACCOUNTS, REQUESTS, LinkStore

logger = logging.getLogger(__name__)

DEFAULT_TELEPORT_COMMAND = ".tp instapearl {ign}"


class LinkError(Exception):
    """Base class for failures reported back to the invoking user."""


class ValidationError(LinkError):
    pass


class NotFound(LinkError):
    pass


class AlreadyResolved(LinkError):
    """Raised when a terminal request is actioned again."""

    def __init__(self, request: LinkRequest) -> None:
        super().__init__(f"This request was already {request.status.value}.")
        self.request = request


class Unauthorized(LinkError):
    pass


class Forbidden(LinkError):
    pass


class NotLinked(LinkError):
    pass


class Presenter(Protocol):
    async def render(self, request: LinkRequest) -> int: ...

    async def is_live(self, presentation_ref: int) -> bool: ...


class LinkService:
    """Owns the request and account collections and every mutation of them.

    Mutations persist the affected collection before returning, so callers can
    acknowledge an action as soon as the method comes back.
    """

    def __init__(self, store: LinkStore, teleport_command: str = DEFAULT_TELEPORT_COMMAND) -> None:
        self._store = store
        self._teleport_command = teleport_command
        self._lock = threading.Lock()
        self._requests: List[LinkRequest] = store.load(REQUESTS)
        self._accounts: Dict[str, AccountLink] = store.load(ACCOUNTS)
        self._index: Dict[str, LinkRequest] = {request.id: request for request in self._requests}
        logger.info(
            "Loaded %d link requests (%d pending) and %d linked accounts",
            len(self._requests),
            len(self.pending_requests()),
            len(self._accounts),
        )

    # Queries -----------------------------------------------------------

    def get_request(self, request_id: str) -> Optional[LinkRequest]:
        return self._index.get(request_id)

    def get_account(self, account_id: str) -> Optional[AccountLink]:
        return self._accounts.get(str(account_id))

    def pending_requests(self) -> List[LinkRequest]:
        return [request for request in self._requests if request.is_pending]

    def list_pending_without_presentation(self) -> List[LinkRequest]:
        """Pending requests that were never rendered.

        Only an unset ``presentation_ref`` is checked here. Whether a recorded
        reference is stale needs the presenter, so that check happens in
        :meth:`reconcile_presentations`.
        """

        return [request for request in self.pending_requests() if request.presentation_ref is None]

    def is_ign_linked_to(self, account_id: str, ign: str) -> bool:
        account = self._accounts.get(str(account_id))
        return account is not None and ign in account.igns

    # Mutations ---------------------------------------------------------

    def create_request(
        self,
        requester_id: str,
        requester_label: str,
        target_id: str,
        target_label: str,
        ign: str,
    ) -> LinkRequest:
        ign = (ign or "").strip()
        if not ign:
            raise ValidationError("IGN must not be empty.")
        with self._lock:
            request = LinkRequest(
                id=self._new_request_id(),
                requester_id=str(requester_id),
                requester_label=requester_label,
                target_id=str(target_id),
                target_label=target_label,
                ign=ign,
            )
            self._requests.append(request)
            self._index[request.id] = request
            self._persist(REQUESTS)
        logger.info(
            "Created link request %s requester=%s target=%s ign=%s",
            request.id,
            request.requester_id,
            request.target_id,
            request.ign,
        )
        return request

    def attach_presentation(self, request_id: str, presentation_ref: int) -> LinkRequest:
        with self._lock:
            request = self._index.get(request_id)
            if request is None:
                raise NotFound(f"Request {request_id} not found.")
            if not request.is_pending:
                raise AlreadyResolved(request)
            request.presentation_ref = presentation_ref
            self._persist(REQUESTS)
        return request

    def resolve(
        self,
        request_id: str,
        resolver_id: str,
        decision: Decision,
        resolver_is_authorized: bool,
    ) -> LinkRequest:
        with self._lock:
            request = self._index.get(request_id)
            if request is None:
                logger.warning("Resolution attempted for missing request %s", request_id)
                raise NotFound("Request not found (may have expired).")
            if not request.is_pending:
                logger.info(
                    "Ignored resolution of already resolved request %s status=%s",
                    request.id,
                    request.status.value,
                )
                raise AlreadyResolved(request)
            if not resolver_is_authorized:
                logger.warning(
                    "User %s attempted to resolve %s without admin role/permission",
                    resolver_id,
                    request.id,
                )
                raise Unauthorized("You do not have permission to approve or reject link requests.")

            request.status = decision.status
            request.resolved_by = str(resolver_id)
            request.resolved_at = datetime.now(timezone.utc)
            if request.status is RequestStatus.APPROVED:
                account = self._accounts.get(request.target_id)
                if account is None:
                    account = AccountLink(account_id=request.target_id, label=request.target_label)
                    self._accounts[request.target_id] = account
                account.add_ign(request.ign)
                self._persist(ACCOUNTS)
            self._persist(REQUESTS)

        if request.status is RequestStatus.APPROVED:
            logger.info(
                "Request %s approved by %s; linked %s to %s",
                request.id,
                resolver_id,
                request.ign,
                request.target_id,
            )
        else:
            logger.info("Request %s rejected by %s", request.id, resolver_id)
        return request

    def request_teleport(
        self,
        caller_id: str,
        caller_is_admin: bool,
        target_account_id: str,
        ign: str,
    ) -> str:
        """Return the teleport trigger for ``ign`` if the caller may use it."""

        ign = (ign or "").strip()
        if not ign:
            raise ValidationError("IGN must not be empty.")
        if not caller_is_admin and str(target_account_id) != str(caller_id):
            logger.warning(
                "User %s attempted to teleport %s for account %s",
                caller_id,
                ign,
                target_account_id,
            )
            raise Forbidden("You can only teleport IGNs linked to your own account.")
        if not self.is_ign_linked_to(target_account_id, ign):
            raise NotLinked(f"IGN {ign} is not linked to that account.")
        logger.info("Teleport requested by %s for %s (account %s)", caller_id, ign, target_account_id)
        return self._teleport_command.format(ign=ign)

    async def reconcile_presentations(self, presenter: Presenter) -> int:
        """Give every pending request exactly one live artifact.

        Requests whose artifact was never sent or has since disappeared are
        rendered again. Returns the number of artifacts sent.
        """

        rendered = 0
        for request in self.pending_requests():
            if request.presentation_ref is not None:
                if await presenter.is_live(request.presentation_ref):
                    logger.info(
                        "Pending request %s already has message %s",
                        request.id,
                        request.presentation_ref,
                    )
                    continue
            try:
                ref = await presenter.render(request)
            except Exception as exc:
                logger.error("Failed to restore message for pending request %s: %s", request.id, exc)
                continue
            try:
                self.attach_presentation(request.id, ref)
            except LinkError as exc:
                logger.warning("Request %s changed during restore: %s", request.id, exc)
                continue
            rendered += 1
            logger.info("Restored pending request message for %s", request.id)
        return rendered

    # Internal ----------------------------------------------------------

    def _new_request_id(self) -> str:
        while True:
            candidate = f"{int(time.time() * 1000)}-{secrets.token_hex(4)}"
            if candidate not in self._index:
                return candidate

    def _persist(self, kind: str) -> None:
        collection = self._requests if kind == REQUESTS else self._accounts
        if not self._store.save(kind, collection):
            logger.error("In-memory %s are ahead of disk; changes will be lost on crash", kind)


__all__ = [
    "AlreadyResolved",
    "Forbidden",
    "LinkError",
    "LinkService",
    "NotFound",
    "NotLinked",
    "Presenter",
    "Unauthorized",
    "ValidationError",
]
