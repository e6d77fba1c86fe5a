"""
Pydantic Models
===============
Request schemas for API endpoints.
"""

from typing import Literal

from pydantic import BaseModel


class EventIn(BaseModel):
    """One tap on the door counter."""
    gender: Literal["male", "female"]
    kind: Literal["entry", "exit"]


class ResetRequest(BaseModel):
    """Reset must be explicitly confirmed by the user."""
    confirm: bool = False


class LoginRequest(BaseModel):
    email: str
    password: str
