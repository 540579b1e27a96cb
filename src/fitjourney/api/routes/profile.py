"""User profile routes."""
from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field

from fitjourney.api.deps import get_services
from fitjourney.container import Services

router = APIRouter()


class ProfileResponse(BaseModel):
    user_id: str
    first_name: Optional[str]
    last_name: Optional[str]
    height_cm: Optional[float]
    registration_date: datetime
    last_login: Optional[datetime]


class ProfileUpdate(BaseModel):
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    height_cm: Optional[float] = Field(default=None, gt=0)


def _response(user) -> ProfileResponse:
    return ProfileResponse(
        user_id=user.user_id,
        first_name=user.first_name,
        last_name=user.last_name,
        height_cm=user.height_cm,
        registration_date=user.registration_date,
        last_login=user.last_login,
    )


@router.get("", response_model=ProfileResponse)
def get_profile(services: Services = Depends(get_services)):
    user = services.profiles.get_profile(services.current_user_id())
    if user is None:
        raise HTTPException(status_code=404, detail="No profile yet")
    return _response(user)


@router.put("", response_model=ProfileResponse)
def save_profile(update: ProfileUpdate, services: Services = Depends(get_services)):
    """Create or update the profile; only the fields sent are changed."""
    changes = update.model_dump(exclude_unset=True)
    user = services.profiles.save_profile(services.current_user_id(), **changes)
    return _response(user)
