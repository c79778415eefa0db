"""Authentication-related request/response schemas."""

from pydantic import BaseModel

from cardflow.schema.user import UserRead


class TokenResponse(BaseModel):
    """Access token returned after register/login."""
    access_token: str
    token_type: str = "bearer"
    user: UserRead
