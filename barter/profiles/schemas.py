from pydantic import BaseModel, field_validator
from uuid import UUID
from datetime import datetime
from typing import Optional


class ProfileModel(BaseModel):
    id: UUID
    full_name: Optional[str] = None
    avatar_url: Optional[str] = None
    created_at: Optional[datetime] = None


class UpdateProfileModel(BaseModel):
    full_name: Optional[str] = None
    avatar_url: Optional[str] = None

    @field_validator("full_name")
    @classmethod
    def validate_full_name(cls, full_name: Optional[str]) -> Optional[str]:
        if full_name is None:
            return None
        full_name = " ".join(full_name.split())
        if not (1 <= len(full_name) <= 80):
            raise ValueError("Full name must be between 1 and 80 characters long.")
        return full_name
