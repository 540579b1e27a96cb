"""The signed-in user's profile."""
from datetime import datetime
from typing import Optional

from sqlmodel import Field, SQLModel


class User(SQLModel, table=True):
    """One row per account, keyed by the Firebase uid."""

    __tablename__ = "users"

    user_id: str = Field(primary_key=True)
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    height_cm: Optional[float] = None
    registration_date: datetime = Field(default_factory=datetime.utcnow)
    last_login: Optional[datetime] = None
    updated_at: datetime = Field(default_factory=datetime.utcnow)
