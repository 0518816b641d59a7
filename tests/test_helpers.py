"""User helper tests."""

from __future__ import annotations

import random
import re
from datetime import datetime, timezone

import pytest
from pydantic import ValidationError

from users_api.utils.helpers import (
    EMAIL_DOMAINS,
    FIRST_NAMES,
    deep_clone,
    format_user_data,
    generate_random_user,
    get_user_stats,
    is_valid_email,
    is_valid_username,
    isoformat,
    merge_user_defaults,
    parse_iso,
    process_external_data,
    sanitize_input,
    validate_request,
)

_NOW = datetime(2024, 6, 1, tzinfo=timezone.utc)


def test_isoformat_round_trip():
    value = datetime(2024, 1, 2, 3, 4, 5, 678000, tzinfo=timezone.utc)
    assert isoformat(value) == "2024-01-02T03:04:05.678Z"
    assert parse_iso("2024-01-02T03:04:05.678Z") == value


def test_format_user_data_drops_private_fields():
    user = {"id": 1, "username": "a", "email": "a@example.com", "createdAt": "x", "password": "p", "profile": {}}
    assert format_user_data(user) == {"id": 1, "username": "a", "email": "a@example.com", "createdAt": "x"}


class TestValidateRequest:
    def test_all_present(self):
        assert validate_request({"a": "x", "b": 0}, ["a", "b"])

    @pytest.mark.parametrize("body", [{"a": "x"}, {"a": "x", "b": ""}, {"a": "x", "b": None}, {"a": "x", "b": []}])
    def test_missing_or_empty(self, body):
        assert not validate_request(body, ["a", "b"])

    def test_non_mapping(self):
        assert not validate_request(["a"], ["a"])


def test_is_valid_email():
    assert is_valid_email("someone@example.com")
    assert not is_valid_email("someone")
    assert not is_valid_email("a@@example.com")


def test_sanitize_input():
    assert sanitize_input("  <b>hi</b>  ") == "bhi/b"
    assert sanitize_input(42) == ""


@pytest.mark.parametrize("username, expected", [
    ("bob", True),
    ("user_123", True),
    ("ab", False),
    ("a" * 21, False),
    ("has space", False),
    ("émile", False),
    (None, False),
])
def test_is_valid_username(username, expected):
    assert is_valid_username(username) is expected


def test_deep_clone_is_independent():
    original = {"a": {"b": [1]}}
    clone = deep_clone(original)
    clone["a"]["b"].append(2)
    assert original == {"a": {"b": [1]}}


class TestMergeUserDefaults:
    def test_defaults(self):
        merged = merge_user_defaults({})
        assert merged == {
            "role": "user",
            "active": True,
            "preferences": {"theme": "light", "notifications": True, "language": "en"},
            "metadata": {"lastLogin": None, "loginCount": 0, "createdBy": "system"},
        }

    def test_known_fields_overlaid(self):
        merged = merge_user_defaults({
            "role": "admin",
            "preferences": {"theme": "dark"},
            "metadata": {"loginCount": 3},
        })
        assert merged["role"] == "admin"
        assert merged["preferences"] == {"theme": "dark", "notifications": True, "language": "en"}
        assert merged["metadata"]["loginCount"] == 3
        assert merged["metadata"]["createdBy"] == "system"

    def test_unknown_keys_dropped(self):
        merged = merge_user_defaults({
            "__proto__": {"isAdmin": True},
            "constructor": {"prototype": {"isAdmin": True}},
            "preferences": {"isAdmin": True},
        })
        assert "__proto__" not in merged
        assert "constructor" not in merged
        assert "isAdmin" not in merged["preferences"]
        # Defaults are not shared between calls
        assert "isAdmin" not in merge_user_defaults({})["preferences"]

    def test_wrong_type_rejected(self):
        with pytest.raises(ValidationError):
            merge_user_defaults({"metadata": {"loginCount": -1}})

    def test_non_mapping_gives_defaults(self):
        assert merge_user_defaults(None)["role"] == "user"


def test_generate_random_user():
    user = generate_random_user(now=_NOW, rng=random.Random(7))
    profile = user["profile"]

    assert profile["firstName"] in FIRST_NAMES
    assert profile["fullName"] == f"{profile['firstName']} {profile['lastName']}"
    assert re.fullmatch(r"[a-z]+\d{3}", user["username"])
    assert user["username"].startswith(profile["firstName"].lower())
    local, domain = user["email"].split("@")
    assert local == user["username"]
    assert domain in EMAIL_DOMAINS

    age = (_NOW - parse_iso(user["createdAt"])).days
    assert 1 <= age <= 100
    join_age = (_NOW - datetime.strptime(profile["joinDate"], "%Y-%m-%d").replace(tzinfo=timezone.utc)).days
    assert 1 <= join_age <= 365
    assert "id" not in user


class TestUserStats:
    def test_stats(self):
        users = [
            {"id": 1, "email": "a@example.com", "createdAt": "2024-01-01T00:00:00.000Z"},
            {"id": 2, "email": "b@example.com", "createdAt": "2024-05-20T00:00:00.000Z"},
            {"id": 3, "email": "c@test.org", "createdAt": "2024-02-01T00:00:00.000Z",
             "updatedAt": "2024-05-30T00:00:00.000Z"},
            {"id": 4, "email": "", "createdAt": "2024-03-01T00:00:00.000Z"},
        ]
        stats = get_user_stats(users, now=_NOW)
        assert stats["total"] == 4
        assert stats["active"] == 2
        assert stats["inactive"] == 2
        assert stats["newest"]["id"] == 2
        assert stats["oldest"]["id"] == 1
        assert stats["byDomain"] == {"example.com": 2, "test.org": 1, "unknown": 1}

    def test_thirty_day_boundary(self):
        users = [{"email": "a@x.io", "createdAt": "2024-05-02T00:00:00.000Z"}]
        assert get_user_stats(users, now=_NOW)["active"] == 1
        users = [{"email": "a@x.io", "createdAt": "2024-05-01T00:00:00.000Z"}]
        assert get_user_stats(users, now=_NOW)["active"] == 0

    def test_empty_and_invalid(self):
        assert get_user_stats([], now=_NOW)["newest"] is None
        assert get_user_stats("nope") is None


class TestProcessExternalData:
    def test_projects_known_fields(self):
        result = process_external_data(
            [{"id": 1, "name": "A", "email": "a@example.com", "metadata": {"role": "admin"}, "extra": 1}],
            now=_NOW,
        )
        assert result == [{
            "id": 1,
            "name": "A",
            "email": "a@example.com",
            "processedAt": "2024-06-01T00:00:00.000Z",
        }]

    def test_non_mapping_items(self):
        assert process_external_data([5], now=_NOW)[0]["id"] is None

    def test_non_list(self):
        assert process_external_data({"id": 1}) == []
