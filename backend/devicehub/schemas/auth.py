"""Auth schemas"""
from typing import Literal

from pydantic import BaseModel, Field


class SignupRequest(BaseModel):
    """Schema for registering a new user"""

    name: str = Field(..., min_length=2, max_length=255, description="Display name")
    email: str = Field(..., max_length=255, pattern=r"^[^@\s]+@[^@\s]+\.[^@\s]+$", description="Login email")
    password: str = Field(..., min_length=6, max_length=128)
    role: Literal["user"] = "user"


class LoginRequest(BaseModel):
    email: str = Field(..., pattern=r"^[^@\s]+@[^@\s]+\.[^@\s]+$", description="Valid email is required")
    password: str = Field(..., min_length=1, description="Password is required")


class UserResponse(BaseModel):
    """Public user fields; the password hash is never included"""

    id: int
    name: str
    email: str
    role: str

    class Config:
        from_attributes = True


class LoginResponse(BaseModel):
    success: bool = True
    accessToken: str
    user: UserResponse


class AccessTokenResponse(BaseModel):
    success: bool = True
    accessToken: str


class ProfileResponse(BaseModel):
    success: bool = True
    user: UserResponse


class MessageResponse(BaseModel):
    success: bool = True
    message: str


class SignupResponse(BaseModel):
    success: bool = True
    message: str = "User registered successfully"
    user: UserResponse
