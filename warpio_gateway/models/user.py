# warpio_gateway/models/user.py
# Copyright (c) 2026 Monolink Systems
# Licensed under AGPLv3
from typing import Optional

from pydantic import BaseModel, Field

USERNAME_PATTERN = r"^[A-Za-z0-9][A-Za-z0-9._-]{0,63}$"


class UserBase(BaseModel):
    username: str = Field(..., min_length=1, max_length=64, pattern=USERNAME_PATTERN)


class UserCreate(UserBase):
    password: str = Field(..., min_length=1)
    home_directory: Optional[str] = Field(default=None, alias="workingDirectory")
    api_key: Optional[str] = Field(default=None, alias="geminiApiKey")

    class Config:
        populate_by_name = True


class LoginRequest(BaseModel):
    username: str = Field(..., min_length=1)
    password: str = Field(..., min_length=1)


class User(UserBase):
    """Public view of a user record: never carries the hash or the credential value."""

    id: str
    home_directory: str = Field(..., alias="workingDirectory")
    has_api_key: bool = Field(default=False, alias="hasApiKey")
    created_at: str = Field(..., alias="createdAt")
    last_login: Optional[str] = Field(default=None, alias="lastLogin")

    class Config:
        populate_by_name = True
        from_attributes = True


class SessionClaims(BaseModel):
    user_id: str
    username: str
    working_directory: str
    api_key: Optional[str] = None

    def public(self) -> dict:
        return {"username": self.username, "workingDirectory": self.working_directory}
