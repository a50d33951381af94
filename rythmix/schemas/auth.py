from datetime import datetime
from typing import Annotated

from pydantic import BaseModel, ConfigDict, EmailStr, Field, StringConstraints


class CamelModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True)


class RegisterRequest(CamelModel):
    email: EmailStr
    username: Annotated[str, StringConstraints(strip_whitespace=True, min_length=3, max_length=50)]
    password: str = Field(min_length=8, max_length=255)
    first_name: str | None = Field(default=None, alias="firstName", min_length=1, max_length=100)
    last_name: str | None = Field(default=None, alias="lastName", min_length=1, max_length=100)

    model_config = ConfigDict(
        json_schema_extra={
            "examples": [{"email": "alice@example.com", "username": "alice", "password": "Passw0rd!"}]
        },
        populate_by_name=True,
    )


class LoginRequest(CamelModel):
    email: EmailStr
    password: str


class RefreshRequest(CamelModel):
    refresh_token: str = Field(alias="refreshToken")


class LogoutRequest(CamelModel):
    refresh_token: str | None = Field(default=None, alias="refreshToken")


class VerifyEmailRequest(CamelModel):
    token: str | None = None


class ResendVerificationRequest(CamelModel):
    email: EmailStr


class UserProjection(CamelModel):
    id: str
    email: str
    username: str
    first_name: str | None = Field(default=None, alias="firstName")
    last_name: str | None = Field(default=None, alias="lastName")

    model_config = ConfigDict(from_attributes=True, populate_by_name=True)


class UserProfile(UserProjection):
    role: str
    email_verified_at: datetime | None = Field(default=None, alias="emailVerifiedAt")
    created_at: datetime | None = Field(default=None, alias="createdAt")


class UserEnvelope(CamelModel):
    user: UserProjection


class RegisterResponse(CamelModel):
    data: UserEnvelope


class ProfileEnvelope(CamelModel):
    user: UserProfile


class MeResponse(CamelModel):
    data: ProfileEnvelope


class VerifiedUser(CamelModel):
    id: str
    email: str
    email_verified_at: datetime | None = Field(default=None, alias="emailVerifiedAt")

    model_config = ConfigDict(from_attributes=True, populate_by_name=True)


class VerifyEmailResponse(CamelModel):
    user: VerifiedUser


class TokenResponse(CamelModel):
    access_token: str = Field(alias="accessToken")
    refresh_token: str = Field(alias="refreshToken")
    token_type: str = Field(default="bearer", alias="tokenType")
    expires_in: int = Field(alias="expiresIn")
    refresh_expires_in: int = Field(alias="refreshExpiresIn")


class AccessTokenResponse(CamelModel):
    access_token: str = Field(alias="accessToken")
    token_type: str = Field(default="bearer", alias="tokenType")
    expires_in: int = Field(alias="expiresIn")


class MessageResponse(CamelModel):
    message: str


class RevokedSessionsResponse(CamelModel):
    message: str
    revoked: int
