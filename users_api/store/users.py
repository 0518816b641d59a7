"""In-memory user repository."""

from __future__ import annotations

import copy
import threading
from collections.abc import Iterable
from datetime import datetime, timedelta
from pathlib import Path
from typing import Any

import structlog
import yaml

from users_api.utils.helpers import isoformat, utc_now

logger = structlog.get_logger()


class UserStore:
    """Users keyed by numeric id, in insertion order.

    Records are plain dicts with camelCase keys. Every method returns
    copies, so callers cannot mutate stored state behind the lock.
    """

    def __init__(self, records: Iterable[dict[str, Any]] = ()) -> None:
        self._lock = threading.Lock()
        self._users: dict[int, dict[str, Any]] = {}
        for record in records:
            self._users[int(record["id"])] = dict(record)

    def __len__(self) -> int:
        return len(self._users)

    def _next_id_locked(self) -> int:
        return max(self._users, default=0) + 1

    def next_id(self) -> int:
        """Id the next created user will receive."""
        with self._lock:
            return self._next_id_locked()

    def list_all(self) -> list[dict[str, Any]]:
        with self._lock:
            return [copy.deepcopy(user) for user in self._users.values()]

    def get(self, user_id: int) -> dict[str, Any] | None:
        with self._lock:
            user = self._users.get(user_id)
            return copy.deepcopy(user) if user is not None else None

    def find_conflict(self, username: str | None, email: str | None) -> dict[str, Any] | None:
        """First user sharing the username or the email, if any."""
        with self._lock:
            for user in self._users.values():
                if user["username"] == username or user["email"] == email:
                    return copy.deepcopy(user)
        return None

    def create(self, username: str, email: str, now: datetime | None = None) -> dict[str, Any]:
        with self._lock:
            user = {
                "id": self._next_id_locked(),
                "username": username,
                "email": email,
                "createdAt": isoformat(now or utc_now()),
            }
            self._users[user["id"]] = user
            logger.info("user_created", user_id=user["id"])
            return copy.deepcopy(user)

    def update(
        self,
        user_id: int,
        username: str | None = None,
        email: str | None = None,
        now: datetime | None = None,
    ) -> dict[str, Any] | None:
        """Update the given fields. Returns None when the user does not exist."""
        with self._lock:
            user = self._users.get(user_id)
            if user is None:
                return None
            if username:
                user["username"] = username
            if email:
                user["email"] = email
            user["updatedAt"] = isoformat(now or utc_now())
            logger.info("user_updated", user_id=user_id)
            return copy.deepcopy(user)

    def delete(self, user_id: int) -> dict[str, Any] | None:
        """Remove a user. Returns the removed record, or None."""
        with self._lock:
            user = self._users.pop(user_id, None)
        if user is not None:
            logger.info("user_deleted", user_id=user_id)
        return user

    def add_many(self, records: Iterable[dict[str, Any]]) -> list[dict[str, Any]]:
        """Insert id-less records, assigning consecutive ids after the current max."""
        added = []
        with self._lock:
            for record in records:
                user = {**record, "id": self._next_id_locked()}
                self._users[user["id"]] = user
                added.append(copy.deepcopy(user))
        logger.info("users_added", count=len(added))
        return added

    def reset(self, records: Iterable[dict[str, Any]] = ()) -> None:
        with self._lock:
            self._users = {int(record["id"]): dict(record) for record in records}


def load_seed_users(path: str | Path, now: datetime | None = None) -> list[dict[str, Any]]:
    """Read seed users from YAML, resolving ``created_days_ago`` against ``now``."""
    path = Path(path)
    if not path.exists():
        logger.warning("seed_users_not_found", path=str(path))
        return []
    with open(path) as f:
        data = yaml.safe_load(f) or {}

    now = now or utc_now()
    records = []
    for entry in data.get("users", []):
        records.append({
            "id": int(entry["id"]),
            "username": entry["username"],
            "email": entry["email"],
            "createdAt": isoformat(now - timedelta(days=int(entry.get("created_days_ago", 0)))),
        })
    return records


_store: UserStore | None = None


def init_user_store(seed_path: str | Path | None = None) -> UserStore:
    """Create the process-wide store, seeded from ``seed_path`` when given."""
    global _store
    records = load_seed_users(seed_path) if seed_path else []
    _store = UserStore(records)
    logger.info("user_store_initialized", users=len(_store))
    return _store


def close_user_store() -> None:
    global _store
    _store = None


def get_user_store() -> UserStore:
    """FastAPI dependency returning the process-wide store."""
    if _store is None:
        from users_api.config.loader import get_settings

        return init_user_store(get_settings().seed_file)
    return _store
