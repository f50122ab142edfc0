"""Link request and account persistence."""
from __future__ import annotations

import json
import logging
import os
from pathlib import Path
from typing import Dict, List, Union

from .models import AccountLink, LinkRequest

logger = logging.getLogger(__name__)

REQUESTS = "requests"
ACCOUNTS = "accounts"

_FILENAMES = {
    REQUESTS: "pending.json",
    ACCOUNTS: "accounts.json",
}

Collection = Union[List[LinkRequest], Dict[str, AccountLink]]


class LinkStore:
    """JSON file backed storage for the request and account collections.

    Each collection is read wholesale by :meth:`load` and rewritten wholesale
    by :meth:`save`. Loading never raises: a missing or corrupt file yields an
    empty collection so the bot can still start.
    """

    def __init__(self, data_dir: Path) -> None:
        self._data_dir = Path(data_dir)
        self._data_dir.mkdir(parents=True, exist_ok=True)

    @property
    def data_dir(self) -> Path:
        return self._data_dir

    def path_for(self, kind: str) -> Path:
        try:
            return self._data_dir / _FILENAMES[kind]
        except KeyError:
            raise ValueError(f"Unknown collection {kind!r}") from None

    def load(self, kind: str) -> Collection:
        path = self.path_for(kind)
        empty: Collection = [] if kind == REQUESTS else {}
        if not path.exists():
            return empty
        try:
            raw = path.read_text(encoding="utf-8")
            data = json.loads(raw) if raw.strip() else None
        except (OSError, ValueError) as exc:
            logger.error("Failed to read %s: %s", path, exc)
            return empty
        if data is None:
            return empty
        if kind == REQUESTS:
            return self._decode_requests(path, data)
        return self._decode_accounts(path, data)

    def save(self, kind: str, collection: Collection) -> bool:
        """Atomically replace the file backing ``kind``.

        Returns ``False`` when the write failed; the caller's in-memory view is
        then ahead of disk until the next successful save.
        """

        path = self.path_for(kind)
        if kind == REQUESTS:
            payload = [request.to_dict() for request in collection]
        else:
            payload = {key: link.to_dict() for key, link in collection.items()}
        tmp_path = path.with_name(path.name + ".tmp")
        try:
            with tmp_path.open("w", encoding="utf-8") as fh:
                json.dump(payload, fh, indent=2)
                fh.flush()
                os.fsync(fh.fileno())
            os.replace(tmp_path, path)
        except OSError as exc:
            logger.error("Failed to write %s: %s", path, exc)
            return False
        return True

    @staticmethod
    def _decode_requests(path: Path, data: object) -> List[LinkRequest]:
        if not isinstance(data, list):
            logger.error("Ignoring %s: expected a list of requests", path)
            return []
        requests: List[LinkRequest] = []
        seen = set()
        for entry in data:
            try:
                request = LinkRequest.from_dict(entry)
            except (KeyError, TypeError, ValueError) as exc:
                logger.error("Skipping unreadable request in %s: %s", path, exc)
                continue
            if request.id in seen:
                logger.warning("Skipping duplicate request id %s in %s", request.id, path)
                continue
            seen.add(request.id)
            requests.append(request)
        return requests

    @staticmethod
    def _decode_accounts(path: Path, data: object) -> Dict[str, AccountLink]:
        if not isinstance(data, dict):
            logger.error("Ignoring %s: expected a mapping of accounts", path)
            return {}
        accounts: Dict[str, AccountLink] = {}
        for account_id, entry in data.items():
            try:
                accounts[str(account_id)] = AccountLink.from_dict(account_id, entry)
            except (AttributeError, TypeError, ValueError) as exc:
                logger.error("Skipping unreadable account %s in %s: %s", account_id, path, exc)
        return accounts


__all__ = ["ACCOUNTS", "REQUESTS", "LinkStore"]
