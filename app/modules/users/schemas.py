from pydantic import BaseModel, EmailStr, Field, AliasChoices, field_validator
from datetime import datetime


class UserRegistrationRequest(BaseModel):
    """Borrower sign-up form"""
    full_name: str = Field(
        ...,
        min_length=1,
        max_length=200,
        validation_alias=AliasChoices("full_name", "fullName")
    )
    email: EmailStr
    password: str = Field(..., min_length=6, max_length=72)

    @field_validator("full_name")
    @classmethod
    def strip_full_name(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("Full name is required")
        return v


class UserLoginRequest(BaseModel):
    email: str = Field(..., min_length=1)
    password: str = Field(..., min_length=1)


class UserProfileResponse(BaseModel):
    id: int
    full_name: str
    email: str
    role: str
    created_at: datetime

    class Config:
        from_attributes = True


class TokenResponse(BaseModel):
    token: str
    token_type: str = "bearer"
    expires_in: int


class RegistrationResponse(TokenResponse):
    message: str = "User registered successfully!"
    user: UserProfileResponse


class BalanceResponse(BaseModel):
    balance: float
