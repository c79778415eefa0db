from fastapi import APIRouter, Depends, Response
from sqlalchemy.ext.asyncio import AsyncSession

from cardflow.api.deps import ACCESS_COOKIE_NAME, get_current_user, get_db
from cardflow.core.config import settings
from cardflow.core.security import create_access_token
from cardflow.models.user import User
from cardflow.schema.auth import TokenResponse
from cardflow.schema.user import UserCreate, UserLogin, UserRead
from cardflow.services import user_service

router = APIRouter()


def set_auth_cookie(response: Response, access_token: str) -> None:
    response.set_cookie(
        ACCESS_COOKIE_NAME,
        access_token,
        max_age=settings.access_token_expires_minutes * 60,
        httponly=True,
        samesite="lax",
        secure=settings.environment.lower() == "production",
        path="/",
    )


def _token_response(user: User) -> TokenResponse:
    return TokenResponse(access_token=create_access_token(str(user.id)), user=UserRead.model_validate(user))


@router.post("/register", response_model=TokenResponse)
async def register(payload: UserCreate, response: Response, session: AsyncSession = Depends(get_db)) -> TokenResponse:
    user = await user_service.create_user(
        session, email=payload.email, password=payload.password, display_name=payload.display_name
    )
    tokens = _token_response(user)
    set_auth_cookie(response, tokens.access_token)
    return tokens


@router.post("/login", response_model=TokenResponse)
async def login(payload: UserLogin, response: Response, session: AsyncSession = Depends(get_db)) -> TokenResponse:
    user = await user_service.authenticate_user(session, payload.email, payload.password)
    tokens = _token_response(user)
    set_auth_cookie(response, tokens.access_token)
    return tokens


@router.get("/me", response_model=UserRead)
async def me(current_user: User = Depends(get_current_user)) -> UserRead:
    return UserRead.model_validate(current_user)
