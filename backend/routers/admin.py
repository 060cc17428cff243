from fastapi import APIRouter, Depends, HTTPException, Query
from typing import Optional
import logging

from auth import require_role
from error_utils import AssessmentError, raise_for_domain_error, safe_raise_http
from models import (
    ActivateUserRequest,
    BlockUserRequest,
    ChangeRoleRequest,
    CreateUserRequest,
    UserRole,
    UserStatusFilter,
)
from services import Services, get_services

logger = logging.getLogger(__name__)

router = APIRouter()

admin_only = require_role(UserRole.ADMIN)


@router.get("/users")
async def list_users(
    role: Optional[UserRole] = None,
    status: Optional[UserStatusFilter] = None,
    search: Optional[str] = Query(None, max_length=100),
    admin: dict = Depends(admin_only),
    services: Services = Depends(get_services)
):
    """User directory, newest first, filtered by role, status and name/email"""
    try:
        return await services.users.list_users(role=role, status=status, search=search)
    except AssessmentError as e:
        raise_for_domain_error(e)
    except Exception as e:
        safe_raise_http("Failed to list users", e)


@router.post("/users")
async def create_user(
    request: CreateUserRequest,
    admin: dict = Depends(admin_only),
    services: Services = Depends(get_services)
):
    try:
        return await services.users.create_user(request, request.role)
    except AssessmentError as e:
        raise_for_domain_error(e)
    except Exception as e:
        safe_raise_http("Failed to create user", e)


@router.patch("/users/{user_id}/block")
async def set_user_blocked(
    user_id: str,
    request: BlockUserRequest,
    admin: dict = Depends(admin_only),
    services: Services = Depends(get_services)
):
    try:
        return await services.users.set_blocked(admin["user_id"], user_id, request.blocked)
    except AssessmentError as e:
        raise_for_domain_error(e)
    except Exception as e:
        safe_raise_http("Failed to update block status", e)


@router.patch("/users/{user_id}/active")
async def set_user_active(
    user_id: str,
    request: ActivateUserRequest,
    admin: dict = Depends(admin_only),
    services: Services = Depends(get_services)
):
    try:
        return await services.users.set_active(admin["user_id"], user_id, request.active)
    except AssessmentError as e:
        raise_for_domain_error(e)
    except Exception as e:
        safe_raise_http("Failed to update active status", e)


@router.patch("/users/{user_id}/role")
async def change_user_role(
    user_id: str,
    request: ChangeRoleRequest,
    admin: dict = Depends(admin_only),
    services: Services = Depends(get_services)
):
    try:
        return await services.users.change_role(admin["user_id"], user_id, request.role)
    except AssessmentError as e:
        raise_for_domain_error(e)
    except Exception as e:
        safe_raise_http("Failed to change role", e)


@router.delete("/users/{user_id}")
async def delete_user(
    user_id: str,
    admin: dict = Depends(admin_only),
    services: Services = Depends(get_services)
):
    """Permanent. The user's attempts and submissions are kept."""
    try:
        await services.users.delete_user(admin["user_id"], user_id)
        return {"success": True, "deleted": user_id}
    except HTTPException:
        raise
    except AssessmentError as e:
        raise_for_domain_error(e)
    except Exception as e:
        safe_raise_http("Failed to delete user", e)
