from typing import Optional

from pydantic import BaseModel, Field


class SignUpRequest(BaseModel):
    email: str = Field(min_length=3)
    password: str = Field(min_length=6)
    username: Optional[str] = None
    display_name: Optional[str] = None


class SignInRequest(BaseModel):
    email: str
    password: str


class Session(BaseModel):
    access_token: str
    refresh_token: Optional[str] = None
    expires_in: Optional[int] = None
    token_type: str = "bearer"
    user: dict = {}
