from pydantic import BaseModel, Field, field_validator
from uuid import UUID
from datetime import datetime
from typing import Optional
from urllib.parse import urlparse


def _optional_url(value: Optional[str]) -> str:
    """Absolute http(s) URL or empty string."""
    if value is None:
        return ""
    value = value.strip()
    if not value:
        return ""
    parsed = urlparse(value)
    if parsed.scheme not in ("http", "https") or not parsed.netloc:
        raise ValueError("must be a valid absolute URL or empty")
    return value


def _clean_entries(values: list[str]) -> list[str]:
    cleaned = [v.strip() for v in values if v and v.strip()]
    if not cleaned:
        raise ValueError("at least one entry required")
    return cleaned


class ProfileBase(BaseModel):
    name: str = Field(min_length=1, max_length=100)
    bio: Optional[str] = Field(default="", max_length=500)
    skills: list[str] = Field(min_length=1, max_length=20)
    interests: list[str] = Field(min_length=1, max_length=20)
    github_url: Optional[str] = ""
    portfolio_url: Optional[str] = ""

    @field_validator("name")
    @classmethod
    def _name_not_blank(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("Name is required")
        return v.strip()

    @field_validator("skills", "interests")
    @classmethod
    def _entries_not_blank(cls, v: list[str]) -> list[str]:
        return _clean_entries(v)

    @field_validator("github_url", "portfolio_url")
    @classmethod
    def _url_or_empty(cls, v: Optional[str]) -> str:
        return _optional_url(v)


class ProfileCreate(ProfileBase):
    photo_url: Optional[str] = ""

    @field_validator("photo_url")
    @classmethod
    def _photo_url_or_empty(cls, v: Optional[str]) -> str:
        return _optional_url(v)


class ProfileUpdate(BaseModel):
    name: Optional[str] = Field(None, min_length=1, max_length=100)
    bio: Optional[str] = Field(None, max_length=500)
    skills: Optional[list[str]] = Field(None, min_length=1, max_length=20)
    interests: Optional[list[str]] = Field(None, min_length=1, max_length=20)
    github_url: Optional[str] = None
    portfolio_url: Optional[str] = None

    @field_validator("name")
    @classmethod
    def _name_not_blank(cls, v: Optional[str]) -> Optional[str]:
        if v is None:
            return None
        if not v.strip():
            raise ValueError("Name is required")
        return v.strip()

    @field_validator("skills", "interests")
    @classmethod
    def _entries_not_blank(cls, v: Optional[list[str]]) -> Optional[list[str]]:
        return None if v is None else _clean_entries(v)

    @field_validator("github_url", "portfolio_url")
    @classmethod
    def _url_or_empty(cls, v: Optional[str]) -> Optional[str]:
        return None if v is None else _optional_url(v)


class ProfileResponse(BaseModel):
    id: UUID
    name: str
    bio: str
    skills: list[str]
    interests: list[str]
    github_url: str
    portfolio_url: str
    photo_url: str
    created_at: datetime
    updated_at: Optional[datetime] = None

    model_config = {"from_attributes": True}


class PhotoUploadResponse(BaseModel):
    photo_url: Optional[str] = None
    uploaded: bool
