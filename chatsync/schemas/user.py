from datetime import datetime
from typing import Optional

from pydantic import BaseModel, Field


class User(BaseModel):

    id: str
    name: str = ""
    email: str = ""
    photo_url: Optional[str] = None
    created_at: Optional[datetime] = None
    is_verified: Optional[bool] = None

    @property
    def display_name(self) -> Optional[str]:
        return self.name or self.email or None


class UserPublic(BaseModel):

    id: str
    name: str = ""
    email: str = ""
    photo_url: Optional[str] = None


class IdentityUser(BaseModel):
    """What the identity provider knows about the signed-in account."""

    id: str
    email: Optional[str] = None
    display_name: Optional[str] = None
    photo_url: Optional[str] = None


class SignInRequest(BaseModel):

    credential: str = Field(min_length=1)


class VerifyCodeRequest(BaseModel):

    code: str = Field(min_length=1, max_length=12)


class SessionStatus(BaseModel):

    state: str
    is_authenticated: bool
    user_id: Optional[str] = None
    error_message: Optional[str] = None
