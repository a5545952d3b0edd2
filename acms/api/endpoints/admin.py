"""
Admin user management endpoints.

Every mutation here changes data held in cached principals, so each one
runs the matching invalidation hook before responding.
"""

from typing import Any, Dict

import structlog
from fastapi import APIRouter, Depends, HTTPException, status
from pydantic import AliasChoices, BaseModel, Field

from ...domain.cache.principal import Principal, Role
from ...repositories.users import UserRepository
from ...services.cache.invalidation import CacheInvalidationService
from ..dependencies import (
    get_invalidation_service,
    get_user_repository,
    require_roles,
)

logger = structlog.get_logger()
router = APIRouter(prefix="/api/admin", tags=["admin"])

require_admin = require_roles(Role.ADMIN)


class RoleUpdate(BaseModel):
    role: str = Field(..., description="student, counsellor or admin")


class CounsellorAssignment(BaseModel):
    counsellor_id: str = Field(
        ...,
        min_length=1,
        validation_alias=AliasChoices("counsellor_id", "counsellorId"),
    )


@router.patch("/users/{user_id}/role")
async def update_user_role(
    user_id: str,
    update: RoleUpdate,
    admin: Principal = Depends(require_admin),
    repository: UserRepository = Depends(get_user_repository),
    invalidation: CacheInvalidationService = Depends(get_invalidation_service),
) -> Dict[str, Any]:
    try:
        role = Role(update.role)
    except ValueError:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid role")

    record = await repository.update_role(user_id, role.value)
    if record is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="User not found")

    await invalidation.on_role_changed(user_id)
    logger.info("User role updated", user_id=user_id, role=role.value, admin_id=admin.id)

    return {
        "success": True,
        "message": "User role updated successfully",
        "user": Principal.from_record(record).model_dump(mode="json"),
    }


@router.patch("/users/{student_id}/assign-counsellor")
async def assign_counsellor(
    student_id: str,
    assignment: CounsellorAssignment,
    admin: Principal = Depends(require_admin),
    repository: UserRepository = Depends(get_user_repository),
    invalidation: CacheInvalidationService = Depends(get_invalidation_service),
) -> Dict[str, Any]:
    counsellor = await repository.get_by_id(assignment.counsellor_id)
    if counsellor is None or counsellor.get("role") != Role.COUNSELLOR.value:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND, detail="Counsellor not found"
        )

    student = await repository.get_by_id(student_id)
    if student is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Student not found")
    previous_counsellor_id = student.get("counsellor_id") or student.get("counsellorId")

    record = await repository.assign_counsellor(student_id, assignment.counsellor_id)
    if record is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Student not found")

    await invalidation.on_counsellor_assigned(
        student_id, assignment.counsellor_id, previous_counsellor_id
    )
    logger.info(
        "Counsellor assigned",
        student_id=student_id,
        counsellor_id=assignment.counsellor_id,
        admin_id=admin.id,
    )

    return {
        "success": True,
        "message": "Counsellor assigned successfully",
        "student": Principal.from_record(record).model_dump(mode="json"),
    }


@router.delete("/users/{user_id}")
async def delete_user(
    user_id: str,
    admin: Principal = Depends(require_admin),
    repository: UserRepository = Depends(get_user_repository),
    invalidation: CacheInvalidationService = Depends(get_invalidation_service),
) -> Dict[str, Any]:
    deleted = await repository.delete(user_id)
    if not deleted:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="User not found")

    await invalidation.on_user_deleted(user_id)
    logger.info("User deleted", user_id=user_id, admin_id=admin.id)

    return {"success": True, "message": "User deleted successfully"}
