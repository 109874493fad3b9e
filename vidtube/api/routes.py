from __future__ import annotations

from pathlib import Path
from typing import Any, List, Optional

from fastapi import APIRouter, Body, Cookie, Depends, File, Form, Header, Response, UploadFile
from pydantic import BaseModel

from vidtube.api.schemas import (
    AccountOut,
    ApiResponse,
    ChannelProfileOut,
    LoginRequest,
    LoginResponse,
    PasswordChangeRequest,
    TokenPairResponse,
    TokenRefreshRequest,
    UpdateAccountRequest,
    WatchedVideoOut,
)
from vidtube.service.auth import TokenPair
from vidtube.service.runtime import Runtime, get_runtime
from vidtube.storage.models import Account

ACCESS_COOKIE = "accessToken"
REFRESH_COOKIE = "refreshToken"

router = APIRouter(prefix="/api/v1/users")


def _dump(data: Any) -> Any:
    if isinstance(data, BaseModel):
        return data.model_dump(by_alias=True, mode="json")
    if isinstance(data, list):
        return [_dump(item) for item in data]
    return data


def _envelope(data: Any, message: str, status_code: int = 200) -> ApiResponse:
    return ApiResponse(status_code=status_code, data=_dump(data), message=message)


def _apply_token_cookies(response: Response, runtime: Runtime, tokens: TokenPair) -> None:
    secure = runtime.settings.cookie_secure
    response.set_cookie(
        ACCESS_COOKIE,
        tokens.access_token,
        httponly=True,
        secure=secure,
        samesite="lax",
        max_age=runtime.settings.access_token_ttl_minutes * 60,
        path="/",
    )
    response.set_cookie(
        REFRESH_COOKIE,
        tokens.refresh_token,
        httponly=True,
        secure=secure,
        samesite="lax",
        max_age=runtime.settings.refresh_token_ttl_minutes * 60,
        path="/",
    )


def _clear_token_cookies(response: Response, runtime: Runtime) -> None:
    for name in (ACCESS_COOKIE, REFRESH_COOKIE):
        response.delete_cookie(
            name,
            path="/",
            secure=runtime.settings.cookie_secure,
            httponly=True,
            samesite="lax",
        )


async def get_current_account(
    access_token: Optional[str] = Cookie(None, alias=ACCESS_COOKIE),
    authorization: Optional[str] = Header(None),
) -> Account:
    runtime = get_runtime()
    return await runtime.auth.authenticate(access_token, authorization)


async def _stage(runtime: Runtime, upload: Optional[UploadFile]) -> Optional[Path]:
    if upload is None or not upload.filename:
        return None
    return await runtime.media.save_upload(upload)


@router.post("/register", status_code=201, response_model=ApiResponse)
async def register(
    full_name: Optional[str] = Form(None, alias="fullName"),
    email: Optional[str] = Form(None),
    username: Optional[str] = Form(None),
    password: Optional[str] = Form(None),
    avatar: Optional[UploadFile] = File(None),
    cover_image: Optional[UploadFile] = File(None, alias="coverImage"),
):
    runtime = get_runtime()
    avatar_path: Optional[Path] = None
    cover_path: Optional[Path] = None
    try:
        avatar_path = await _stage(runtime, avatar)
        cover_path = await _stage(runtime, cover_image)
    except Exception:
        runtime.media.discard(avatar_path)
        raise
    account = await runtime.auth.register(
        full_name, email, username, password, avatar_path, cover_path
    )
    return _envelope(AccountOut.from_account(account), "User registered successfully", 201)


@router.post("/login", response_model=ApiResponse)
async def login(body: LoginRequest, response: Response):
    runtime = get_runtime()
    account, tokens = await runtime.auth.login(
        body.username, body.password, email=body.email
    )
    _apply_token_cookies(response, runtime, tokens)
    return _envelope(
        LoginResponse(
            user=AccountOut.from_account(account),
            access_token=tokens.access_token,
            refresh_token=tokens.refresh_token,
        ),
        "User logged in successfully",
    )


@router.post("/logout", response_model=ApiResponse)
async def logout(response: Response, account: Account = Depends(get_current_account)):
    runtime = get_runtime()
    await runtime.auth.logout(account.id)
    _clear_token_cookies(response, runtime)
    return _envelope({}, "User logged out")


@router.post("/refresh-token", response_model=ApiResponse)
async def refresh_token(
    response: Response,
    body: Optional[TokenRefreshRequest] = Body(None),
    cookie_token: Optional[str] = Cookie(None, alias=REFRESH_COOKIE),
):
    runtime = get_runtime()
    token = cookie_token or (body.refresh_token if body else None)
    tokens = await runtime.auth.renew(token)
    _apply_token_cookies(response, runtime, tokens)
    return _envelope(
        TokenPairResponse(access_token=tokens.access_token, refresh_token=tokens.refresh_token),
        "Access token refreshed",
    )


@router.patch("/change-password", response_model=ApiResponse)
async def change_password(
    body: PasswordChangeRequest, account: Account = Depends(get_current_account)
):
    runtime = get_runtime()
    await runtime.auth.change_password(account.id, body.old_password, body.new_password)
    return _envelope({}, "Password changed successfully")


@router.get("/current-user", response_model=ApiResponse)
async def current_user(account: Account = Depends(get_current_account)):
    runtime = get_runtime()
    current = await runtime.profile.get_current(account.id)
    return _envelope(AccountOut.from_account(current), "User fetched successfully")


@router.patch("/update-account", response_model=ApiResponse)
async def update_account(
    body: UpdateAccountRequest, account: Account = Depends(get_current_account)
):
    runtime = get_runtime()
    updated = await runtime.profile.update_account(
        account.id, full_name=body.full_name, email=body.email
    )
    return _envelope(AccountOut.from_account(updated), "Account details updated successfully")


@router.patch("/avatar", response_model=ApiResponse)
async def update_avatar(
    avatar: Optional[UploadFile] = File(None),
    account: Account = Depends(get_current_account),
):
    runtime = get_runtime()
    local_path = await _stage(runtime, avatar)
    updated = await runtime.profile.update_avatar(account.id, local_path)
    return _envelope(AccountOut.from_account(updated), "Avatar updated successfully")


@router.patch("/cover-image", response_model=ApiResponse)
async def update_cover_image(
    cover_image: Optional[UploadFile] = File(None, alias="coverImage"),
    account: Account = Depends(get_current_account),
):
    runtime = get_runtime()
    local_path = await _stage(runtime, cover_image)
    updated = await runtime.profile.update_cover_image(account.id, local_path)
    return _envelope(AccountOut.from_account(updated), "Cover image updated successfully")


@router.get("/c/{username}", response_model=ApiResponse)
async def channel_profile(username: str, account: Account = Depends(get_current_account)):
    runtime = get_runtime()
    profile = await runtime.profile.channel_profile(username, account.id)
    return _envelope(ChannelProfileOut.from_profile(profile), "User channel fetched successfully")


@router.post("/c/{username}/subscription", response_model=ApiResponse)
async def subscribe(username: str, account: Account = Depends(get_current_account)):
    runtime = get_runtime()
    profile = await runtime.profile.subscribe(account.id, username)
    return _envelope(ChannelProfileOut.from_profile(profile), "Subscribed to channel")


@router.delete("/c/{username}/subscription", response_model=ApiResponse)
async def unsubscribe(username: str, account: Account = Depends(get_current_account)):
    runtime = get_runtime()
    profile = await runtime.profile.unsubscribe(account.id, username)
    return _envelope(ChannelProfileOut.from_profile(profile), "Unsubscribed from channel")


@router.get("/watch-history", response_model=ApiResponse)
async def watch_history(account: Account = Depends(get_current_account)):
    runtime = get_runtime()
    history = await runtime.profile.watch_history(account.id)
    items: List[WatchedVideoOut] = [WatchedVideoOut.from_watched(item) for item in history]
    return _envelope(items, "Watch history fetched successfully")
