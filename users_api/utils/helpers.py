"""User data helpers: projection, validation, random users and statistics."""

from __future__ import annotations

import copy
import random
import re
from collections import Counter
from datetime import datetime, timedelta, timezone
from typing import Any

from email_validator import EmailNotValidError, validate_email

from users_api.models.user import UserDefaults, UserMetadata, UserPreferences
from users_api.utils.sanitize import strip_angle_brackets

PUBLIC_USER_FIELDS = ("id", "username", "email", "createdAt", "updatedAt")

FIRST_NAMES = ["John", "Jane", "Michael", "Sarah", "David", "Emily", "Chris", "Jessica", "Ryan", "Ashley"]
LAST_NAMES = ["Smith", "Johnson", "Williams", "Brown", "Jones", "Garcia", "Miller", "Davis", "Rodriguez", "Martinez"]
EMAIL_DOMAINS = ["example.com", "test.org", "sample.net", "demo.co"]

ACTIVE_WINDOW_DAYS = 30

_USERNAME_RE = re.compile(r"[A-Za-z0-9_]+")


# ── Time ────────────────────────────────────────────────────────────────


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def isoformat(value: datetime) -> str:
    """UTC timestamp with millisecond precision and a ``Z`` suffix."""
    return value.astimezone(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def parse_iso(value: str) -> datetime:
    parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


# ── Projection and validation ───────────────────────────────────────────


def format_user_data(user: dict[str, Any]) -> dict[str, Any]:
    """Public view of a user record."""
    return {key: user[key] for key in PUBLIC_USER_FIELDS if key in user}


def _to_string(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, list):
        return ",".join(_to_string(item) for item in value)
    return str(value)


def validate_request(body: Any, required_fields: list[str]) -> bool:
    """True when ``body`` is a mapping with a non-empty value for every required field."""
    if not isinstance(body, dict):
        return False
    return all(field in body and _to_string(body[field]) != "" for field in required_fields)


def is_valid_email(email: str) -> bool:
    """Syntax-only email check; no DNS lookups."""
    try:
        validate_email(email, check_deliverability=False)
    except EmailNotValidError:
        return False
    return True


def sanitize_input(value: Any) -> str:
    """Trim a free-text value and drop angle brackets. Non-strings become ''."""
    if not isinstance(value, str):
        return ""
    return strip_angle_brackets(value.strip())


def is_valid_username(username: Any) -> bool:
    """3-20 characters of letters, digits and underscores."""
    if not isinstance(username, str):
        return False
    return 3 <= len(username) <= 20 and _USERNAME_RE.fullmatch(username) is not None


def deep_clone(obj: Any) -> Any:
    return copy.deepcopy(obj)


# ── Defaults ────────────────────────────────────────────────────────────


def merge_user_defaults(user_data: Any) -> dict[str, Any]:
    """Overlay caller-supplied account settings on the defaults.

    Only the known fields of each section are copied; anything else in
    ``user_data`` (including ``__proto__`` or ``constructor`` keys) is
    dropped. Raises pydantic.ValidationError when a known field has the
    wrong type.
    """
    defaults = UserDefaults()
    if not isinstance(user_data, dict):
        return defaults.model_dump(by_alias=True)

    merged: dict[str, Any] = {}
    for key in ("role", "active"):
        if key in user_data:
            merged[key] = user_data[key]

    sections: dict[str, type[UserPreferences] | type[UserMetadata]] = {
        "preferences": UserPreferences,
        "metadata": UserMetadata,
    }
    for section, model in sections.items():
        base = getattr(defaults, section).model_dump(by_alias=True)
        incoming = user_data.get(section)
        if isinstance(incoming, dict):
            base.update(incoming)
        merged[section] = model.model_validate(base)

    return UserDefaults.model_validate(merged).model_dump(by_alias=True)


# ── Random users ────────────────────────────────────────────────────────


def generate_random_user(now: datetime | None = None, rng: random.Random | None = None) -> dict[str, Any]:
    """Build a plausible user record without an id."""
    now = now or utc_now()
    rng = rng or random.Random()

    first_name = rng.choice(FIRST_NAMES)
    last_name = rng.choice(LAST_NAMES)
    username = f"{first_name}{last_name}{rng.randint(100, 999)}".lower()
    email = f"{username}@{rng.choice(EMAIL_DOMAINS)}"

    return {
        "username": username,
        "email": email,
        "createdAt": isoformat(now - timedelta(days=rng.randint(1, 100))),
        "profile": {
            "firstName": first_name,
            "lastName": last_name,
            "fullName": f"{first_name} {last_name}",
            "joinDate": (now - timedelta(days=rng.randint(1, 365))).strftime("%Y-%m-%d"),
        },
    }


# ── Statistics ──────────────────────────────────────────────────────────


def _email_domain(user: dict[str, Any]) -> str:
    email = user.get("email") or ""
    return email.split("@")[1] if "@" in email else "unknown"


def get_user_stats(users: Any, now: datetime | None = None) -> dict[str, Any] | None:
    """Activity and domain statistics over a list of user records.

    A user is active when its last update (or creation) is at most
    ACTIVE_WINDOW_DAYS whole days old.
    """
    if not isinstance(users, list):
        return None
    now = now or utc_now()

    active = 0
    for user in users:
        last_active = parse_iso(user.get("updatedAt") or user["createdAt"])
        if (now - last_active).days <= ACTIVE_WINDOW_DAYS:
            active += 1

    def created(user: dict[str, Any]) -> datetime:
        return parse_iso(user["createdAt"])

    return {
        "total": len(users),
        "active": active,
        "inactive": len(users) - active,
        "newest": max(users, key=created) if users else None,
        "oldest": min(users, key=created) if users else None,
        "byDomain": dict(Counter(_email_domain(user) for user in users)),
    }


def process_external_data(data: Any, now: datetime | None = None) -> list[dict[str, Any]]:
    """Project externally supplied records onto a fixed set of fields.

    Nested ``metadata`` is not carried over.
    """
    if not isinstance(data, list):
        return []
    processed_at = isoformat(now or utc_now())
    results = []
    for item in data:
        source = item if isinstance(item, dict) else {}
        results.append({
            "id": source.get("id"),
            "name": source.get("name"),
            "email": source.get("email"),
            "processedAt": processed_at,
        })
    return results
