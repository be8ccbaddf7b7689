"""
Pydantic schemas for the FastAPI boundary.
"""

from __future__ import annotations

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, Field

from recordkeeper.documents import TransactionStatus


class RecordResponse(BaseModel):
    success: bool = True
    message: str
    data: dict


class RecordListResponse(BaseModel):
    success: bool = True
    message: str
    data: list[dict]


class ErrorResponse(BaseModel):
    success: bool = False
    message: str


class LoginRequest(BaseModel):
    email: str
    password: str = Field(..., min_length=1)


class LoginResponse(BaseModel):
    success: bool = True
    message: str
    data: dict
    access_token: str
    expires_at: datetime
    max_age: int


class LogoutResponse(BaseModel):
    success: bool = True
    message: str


class PasswordUpdateRequest(BaseModel):
    old_password: str
    new_password: str = Field(..., min_length=1)
    confirm_password: str


class TransactionCreateRequest(BaseModel):
    user: str
    product: list[str] = Field(..., min_length=1)
    date: datetime
    status: Optional[TransactionStatus] = None


class TransactionUpdateRequest(BaseModel):
    user: Optional[str] = None
    product: Optional[list[str]] = None
    date: Optional[datetime] = None
    status: Optional[TransactionStatus] = None
