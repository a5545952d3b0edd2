"""
Profile endpoints for the authenticated user.
"""

from typing import Any, Dict, Optional

import structlog
from fastapi import APIRouter, Depends, HTTPException, status
from pydantic import AliasChoices, BaseModel, ConfigDict, Field

from ...domain.cache.principal import Principal
from ...repositories.users import UserRepository
from ...services.cache.invalidation import CacheInvalidationService
from ..dependencies import (
    get_invalidation_service,
    get_rate_limited_principal,
    get_user_repository,
)

logger = structlog.get_logger()
router = APIRouter(prefix="/api/users", tags=["users"])


class ProfileUpdate(BaseModel):
    """Editable profile fields."""

    model_config = ConfigDict(extra="ignore")

    first_name: Optional[str] = Field(
        None,
        min_length=1,
        max_length=100,
        validation_alias=AliasChoices("first_name", "firstName"),
    )
    last_name: Optional[str] = Field(
        None,
        min_length=1,
        max_length=100,
        validation_alias=AliasChoices("last_name", "lastName"),
    )
    department: Optional[str] = Field(None, max_length=100)


@router.get("/profile", response_model=Principal)
async def get_profile(
    principal: Principal = Depends(get_rate_limited_principal),
) -> Principal:
    return principal


@router.patch("/profile", response_model=Principal)
async def update_profile(
    update: ProfileUpdate,
    principal: Principal = Depends(get_rate_limited_principal),
    repository: UserRepository = Depends(get_user_repository),
    invalidation: CacheInvalidationService = Depends(get_invalidation_service),
) -> Principal:
    fields: Dict[str, Any] = update.model_dump(exclude_unset=True)
    if not fields:
        return principal

    record = await repository.update_profile(principal.id, fields)
    if record is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="User not found")

    await invalidation.on_profile_updated(principal.id)
    logger.info("Profile updated", user_id=principal.id, fields=sorted(fields))
    return Principal.from_record(record)
