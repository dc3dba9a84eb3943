"""
api/routes/v1/protected.py -- Sample route guarded by get_current_user.

Demonstrates the pattern every authenticated route follows: declare the
dependency and receive a PublicUser, or the request never reaches the body.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends

from api.models import ProtectedResponse, UserResponse
from auth.dependencies import get_current_user
from auth.models import PublicUser

router = APIRouter()


@router.get("/protected", response_model=ProtectedResponse)
def protected(current_user: PublicUser = Depends(get_current_user)) -> ProtectedResponse:
    return ProtectedResponse(
        message="This is a protected route",
        user=UserResponse.from_domain(current_user),
    )
