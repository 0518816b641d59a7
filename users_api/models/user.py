"""Pydantic models for user requests and user defaults."""

from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field


class UserCreate(BaseModel):
    """Request body for creating a user. Presence is checked by the route."""

    username: str | None = None
    email: str | None = None


class UserUpdate(BaseModel):
    """Request body for updating a user."""

    username: str | None = None
    email: str | None = None


class GenerateUsersRequest(BaseModel):
    """Request body for generating random users."""

    count: int = 5


class UserPreferences(BaseModel):
    model_config = ConfigDict(extra="ignore")

    theme: str = "light"
    notifications: bool = True
    language: str = "en"


class UserMetadata(BaseModel):
    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    last_login: datetime | None = Field(None, alias="lastLogin")
    login_count: int = Field(0, alias="loginCount", ge=0)
    created_by: str = Field("system", alias="createdBy")


class UserDefaults(BaseModel):
    """Fixed-shape account defaults. Unknown keys are dropped on validation."""

    model_config = ConfigDict(extra="ignore")

    role: str = "user"
    active: bool = True
    preferences: UserPreferences = Field(default_factory=UserPreferences)
    metadata: UserMetadata = Field(default_factory=UserMetadata)
