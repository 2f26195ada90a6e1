"""Pydantic schemas for the auth domain."""

from datetime import datetime

from pydantic import BaseModel, Field


class LoginRequest(BaseModel):
    username: str = Field(min_length=1, max_length=320)
    password: str = Field(min_length=1, max_length=1024)


class LoginResponse(BaseModel):
    user_id: str
    expires_at: datetime


class LogoutResponse(BaseModel):
    status: str = "logged_out"
