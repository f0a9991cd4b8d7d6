import re
from pydantic import BaseModel, SecretStr, field_validator
from typing import Optional
from datetime import datetime


PASSWORD_REGEX = r"^(?=.*[a-z])(?=.*[A-Z])(?=.*[0-9])(?=.*[!@#$%^&*()_+={}\[\]|\\;:'\",.<>?/~`]).{8,}$"


"""
auth/register
"""


class UserRegistrationModel(BaseModel):
    email: str
    full_name: str
    password: SecretStr

    @field_validator("email")
    @classmethod
    def validate_email(cls, email: str) -> str:
        email = email.strip().lower()
        if not re.match(r"^[^@\s]+@[^@\s]+\.[^@\s]+$", email):
            raise ValueError("Enter a valid email address.")
        return email

    @field_validator("full_name")
    @classmethod
    def validate_full_name(cls, full_name: str) -> str:
        full_name = " ".join(full_name.split())
        if not (1 <= len(full_name) <= 80):
            raise ValueError(
                f"Full name must be between 1 and 80 characters long (got {len(full_name)})."
            )
        return full_name

    @field_validator("password")
    @classmethod
    def validate_password(cls, password: SecretStr) -> SecretStr:
        password_str = password.get_secret_value()

        # Minimum length of 8 characters (no maximum)
        if len(password_str) < 8:
            raise ValueError("Password must be at least 8 characters long.")

        if not re.match(PASSWORD_REGEX, password_str):
            raise ValueError(
                "Password must contain at least one uppercase letter, one lowercase letter, one number, and one special character."
            )

        return password


class UserRegistrationResponseModel(BaseModel):
    id: str
    email: str
    full_name: str


"""
auth/login
"""


class UserLoginModel(BaseModel):
    email: str
    password: SecretStr


class UserLoginResponseModel(BaseModel):
    access_token: str
    expires_in: int
    user_id: str
    email: str


"""
auth/access
"""


class AccessTokenResponseModel(BaseModel):
    access_token: str


"""
auth/me
"""


class AuthInfo(BaseModel):
    id: str
    email: Optional[str] = None


class ProfileInfo(BaseModel):
    full_name: Optional[str] = None
    avatar_url: Optional[str] = None
    created_at: Optional[datetime] = None


class MeResponseModel(BaseModel):
    auth: AuthInfo
    profile: Optional[ProfileInfo] = None
