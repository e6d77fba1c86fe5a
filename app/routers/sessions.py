"""
Admin Sign-in Endpoints
=======================
"""

from fastapi import APIRouter, Depends, Header

from app.auth import bearer_token, require_admin, sign_in, sign_out
from app.responses import success_response
from app.schemas import LoginRequest

router = APIRouter()


@router.post("/auth/login")
async def login(credentials: LoginRequest):
    token = await sign_in(credentials.email, credentials.password)
    return success_response({"token": token, "token_type": "bearer"})


@router.post("/auth/logout")
async def logout(authorization: str = Header(default=None)):
    token = bearer_token(authorization)
    if token:
        sign_out(token)
    return success_response({"message": "Signed out"})


@router.get("/auth/me")
async def me(admin: dict = Depends(require_admin)):
    return success_response(admin)
