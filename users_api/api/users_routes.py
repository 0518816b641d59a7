"""CRUD endpoints for users."""

from __future__ import annotations

import math
from typing import Any

import structlog
from fastapi import APIRouter, Depends, Query
from fastapi.responses import JSONResponse

from users_api.config.loader import get_settings
from users_api.models.user import GenerateUsersRequest, UserCreate, UserUpdate
from users_api.store.users import UserStore, get_user_store
from users_api.utils.helpers import (
    format_user_data,
    generate_random_user,
    get_user_stats,
    is_valid_email,
    isoformat,
    utc_now,
)

logger = structlog.get_logger()

router = APIRouter(prefix="/api/users", tags=["users"])


def _ok(data: Any, status_code: int = 200, **extra: Any) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content={"success": True, "data": data, **extra, "timestamp": isoformat(utc_now())},
    )


def _error(status_code: int, message: str) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content={"success": False, "error": message, "timestamp": isoformat(utc_now())},
    )


def _not_found() -> JSONResponse:
    return _error(404, "User not found")


@router.get("/")
async def list_users(
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1),
    search: str | None = None,
    store: UserStore = Depends(get_user_store),
):
    """List users, optionally filtered by a username/email substring."""
    users = store.list_all()
    if search:
        needle = search.lower()
        users = [
            user for user in users
            if needle in user["username"].lower() or needle in user["email"].lower()
        ]

    start = (page - 1) * limit
    page_users = users[start:start + limit]
    return _ok(
        [format_user_data(user) for user in page_users],
        pagination={
            "page": page,
            "limit": limit,
            "total": len(users),
            "pages": math.ceil(len(users) / limit),
        },
    )


@router.get("/stats")
async def user_stats(store: UserStore = Depends(get_user_store)):
    """Activity and email-domain statistics."""
    stats = get_user_stats(store.list_all())
    if stats["newest"] is not None:
        stats["newest"] = format_user_data(stats["newest"])
        stats["oldest"] = format_user_data(stats["oldest"])
    return _ok(stats)


@router.get("/{user_id}")
async def get_user(user_id: int, store: UserStore = Depends(get_user_store)):
    """Get a user by ID."""
    user = store.get(user_id)
    if user is None:
        return _not_found()
    return _ok(format_user_data(user))


@router.post("/", status_code=201)
async def create_user(body: UserCreate, store: UserStore = Depends(get_user_store)):
    """Create a user with a unique username and email."""
    if not body.username or not body.email:
        return _error(400, "Username and email are required")
    if not is_valid_email(body.email):
        return _error(400, "Invalid email format")
    if store.find_conflict(body.username, body.email) is not None:
        logger.info("user_create_conflict", username=body.username)
        return _error(409, "User already exists")

    user = store.create(body.username, body.email)
    return _ok(format_user_data(user), status_code=201, message="User created successfully")


@router.put("/{user_id}")
async def update_user(user_id: int, body: UserUpdate, store: UserStore = Depends(get_user_store)):
    """Update username and/or email."""
    if store.get(user_id) is None:
        return _not_found()
    if body.email and not is_valid_email(body.email):
        return _error(400, "Invalid email format")

    user = store.update(user_id, username=body.username, email=body.email)
    if user is None:
        return _not_found()
    return _ok(format_user_data(user), message="User updated successfully")


@router.delete("/{user_id}")
async def delete_user(user_id: int, store: UserStore = Depends(get_user_store)):
    """Delete a user and return the removed record."""
    user = store.delete(user_id)
    if user is None:
        return _not_found()
    return _ok(format_user_data(user), message="User deleted successfully")


@router.post("/generate-random")
async def generate_random_users(
    body: GenerateUsersRequest | None = None,
    store: UserStore = Depends(get_user_store),
):
    """Add up to ``random_user_cap`` randomly generated users."""
    count = body.count if body is not None else GenerateUsersRequest().count
    count = max(0, min(count, get_settings().random_user_cap))

    added = store.add_many(generate_random_user() for _ in range(count))
    return _ok(
        [format_user_data(user) for user in added],
        message=f"Generated {len(added)} random users",
    )
