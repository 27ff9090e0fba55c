from __future__ import annotations

from typing import Any, Optional

from fastapi import APIRouter, Body, Depends, Header, Request

from amora.api.schemas import (
    AuthResponse,
    ErrorResponse,
    LoginRequest,
    MessageResponse,
    Pagination,
    ProfileOut,
    ProfileResponse,
    RefreshTokenRequest,
    RegisterRequest,
    SearchQuery,
    SearchResponse,
    SearchResult,
    TokenResponse,
    UpdateProfileRequest,
    UserSummary,
)
from amora.api.validation import Invalid, validate
from amora.service.auth import AuthContext
from amora.service.errors import ValidationError
from amora.service.runtime import get_runtime
from amora.service.search import SearchCriteria

router = APIRouter(prefix="/api/users", tags=["users"])

_ERRORS = {
    400: {"model": ErrorResponse, "description": "Validation error"},
    401: {"model": ErrorResponse, "description": "Missing or invalid credentials"},
}


async def get_user(authorization: Optional[str] = Header(None)) -> AuthContext:
    """Resolve the bearer token into the caller's context or raise 401."""
    runtime = get_runtime()
    return await runtime.auth.authenticate(authorization)


@router.post("/register", response_model=AuthResponse, status_code=201, responses=_ERRORS)
async def register(payload: Any = Body(None)):
    """Create an identity and return its first token pair."""
    result = validate(RegisterRequest, payload)
    if isinstance(result, Invalid):
        raise result.to_error()
    body = result.value
    runtime = get_runtime()
    identity, pair = await runtime.auth.register(
        email=body.email,
        password=body.password,
        first_name=body.first_name,
        last_name=body.last_name,
        birth_date=body.date_of_birth,
        gender=body.gender,
        location=body.location.to_point(),
        bio=body.bio,
        interests=body.interests,
        photos=body.photos,
        preferences=body.preferences.to_preferences() if body.preferences else None,
    )
    return AuthResponse(
        message="User registered successfully",
        user=UserSummary.from_identity(identity),
        access_token=pair.access_token,
        refresh_token=pair.refresh_token,
    )


@router.post("/login", response_model=AuthResponse, responses=_ERRORS)
async def login(payload: Any = Body(None)):
    result = validate(LoginRequest, payload)
    if isinstance(result, Invalid):
        raise result.to_error()
    body = result.value
    runtime = get_runtime()
    identity, pair = await runtime.auth.login(body.email, body.password)
    return AuthResponse(
        message="Login successful",
        user=UserSummary.from_identity(identity),
        access_token=pair.access_token,
        refresh_token=pair.refresh_token,
    )


@router.post("/refresh-token", response_model=TokenResponse, responses=_ERRORS)
async def refresh_token(payload: Any = Body(None)):
    """Exchange the current refresh token for a new pair.

    The presented token stops working as soon as the new pair is issued.
    """
    result = validate(RefreshTokenRequest, payload)
    if isinstance(result, Invalid):
        raise result.to_error()
    runtime = get_runtime()
    pair = await runtime.auth.refresh(result.value.refresh_token)
    return TokenResponse(
        message="Token refreshed successfully",
        access_token=pair.access_token,
        refresh_token=pair.refresh_token,
    )


@router.post("/logout", response_model=MessageResponse, responses=_ERRORS)
async def logout(principal: AuthContext = Depends(get_user)):
    runtime = get_runtime()
    await runtime.auth.logout(principal)
    return MessageResponse(message="Logged out successfully")


@router.get("/profile", response_model=ProfileResponse, responses=_ERRORS)
async def get_profile(principal: AuthContext = Depends(get_user)):
    return ProfileResponse(
        message="Profile retrieved successfully",
        user=ProfileOut.from_identity(principal.identity),
    )


@router.put("/profile", response_model=ProfileResponse, responses=_ERRORS)
async def update_profile(
    payload: Any = Body(None), principal: AuthContext = Depends(get_user)
):
    """Partially update the caller's profile.

    Preferences are merged field by field; a location replaces the stored one.
    """
    result = validate(UpdateProfileRequest, payload)
    if isinstance(result, Invalid):
        raise result.to_error()
    runtime = get_runtime()
    identity = await runtime.auth.update_profile(principal, result.value.changes())
    return ProfileResponse(
        message="Profile updated successfully",
        user=ProfileOut.from_identity(identity),
    )


@router.delete("/account", response_model=MessageResponse, responses=_ERRORS)
async def delete_account(principal: AuthContext = Depends(get_user)):
    runtime = get_runtime()
    await runtime.auth.delete_account(principal)
    return MessageResponse(message="Account deleted successfully")


@router.get("/search", response_model=SearchResponse, responses=_ERRORS)
async def search_users(request: Request, principal: AuthContext = Depends(get_user)):
    """Other users near the caller, nearest first.

    Query parameters: ``page``, ``limit``, ``max_distance`` (km), ``min_age``,
    ``max_age`` and ``gender``. Age bounds are inclusive.
    """
    runtime = get_runtime()
    result = validate(SearchQuery, dict(request.query_params))
    if isinstance(result, Invalid):
        raise result.to_error()
    query = result.value
    limit = query.limit or runtime.settings.default_page_size
    if limit > runtime.settings.max_page_size:
        message = f"limit must be at most {runtime.settings.max_page_size}"
        raise ValidationError(
            f"limit: {message}",
            detail={"errors": [{"field": "limit", "message": message}]},
        )
    page = runtime.search.search(
        principal.identity,
        SearchCriteria(
            page=query.page,
            limit=limit,
            max_distance_km=query.max_distance,
            min_age=query.min_age,
            max_age=query.max_age,
            gender=query.gender,
        ),
    )
    return SearchResponse(
        message="Users retrieved successfully",
        users=[SearchResult.from_match(match) for match in page.matches],
        pagination=Pagination(
            total=page.total, page=page.page, limit=page.limit, pages=page.pages
        ),
    )
