"""
User administration: profiles, roles and the blocked/active flags.

Signing in belongs to the identity provider that issues the bearer tokens.
This directory decides whether a token's holder may still use the service and
with which role; a role change or a block takes effect on the next request.
"""

import logging
import uuid
from typing import List, Optional

from datetime_utils import Clock, SystemClock
from error_utils import UserAccessError, UserConflictError, UserNotFoundError
from models import CreateStudentRequest, UserProfile, UserRole, UserStatusFilter
from stores import UserStore

logger = logging.getLogger(__name__)


class UserDirectory:
    def __init__(self, store: UserStore, clock: Optional[Clock] = None):
        self.store = store
        self.clock = clock or SystemClock()

    async def get_user(self, user_id: str) -> UserProfile:
        user = await self.store.get(user_id)
        if user is None:
            raise UserNotFoundError(f"User {user_id} not found")
        return user

    async def list_users(self, role: Optional[UserRole] = None, status: Optional[UserStatusFilter] = None,
                         search: Optional[str] = None) -> List[UserProfile]:
        users = [u for u in await self.store.list_users(role) if u.matches(status)]
        if search:
            needle = search.strip().lower()
            users = [u for u in users if needle in u.full_name.lower() or needle in u.email]
        return users

    async def create_user(self, request: CreateStudentRequest, role: UserRole) -> UserProfile:
        if await self.store.find_by_email(request.email) is not None:
            raise UserConflictError(f"A user with email {request.email} already exists")
        user = await self.store.create(UserProfile(
            id=request.user_id or str(uuid.uuid4()),
            email=request.email,
            full_name=request.full_name.strip(),
            role=role,
            created_at=self.clock.now(),
        ))
        logger.info(f"Created {role.value} {user.id} ({user.email})")
        return user

    async def set_blocked(self, actor_id: str, user_id: str, blocked: bool) -> UserProfile:
        if blocked:
            self._refuse_own_account(actor_id, user_id, "block")
        return await self._update(user_id, is_blocked=blocked)

    async def set_active(self, actor_id: str, user_id: str, active: bool) -> UserProfile:
        if not active:
            self._refuse_own_account(actor_id, user_id, "deactivate")
        return await self._update(user_id, is_active=active)

    async def change_role(self, actor_id: str, user_id: str, role: UserRole) -> UserProfile:
        self._refuse_own_account(actor_id, user_id, "change the role of")
        return await self._update(user_id, role=role)

    async def delete_user(self, actor_id: str, user_id: str) -> None:
        """Remove the profile. Sessions and submissions stay for the record."""
        self._refuse_own_account(actor_id, user_id, "delete")
        if not await self.store.delete(user_id):
            raise UserNotFoundError(f"User {user_id} not found")
        logger.info(f"Deleted user {user_id}")

    async def check_access(self, user_id: str) -> Optional[UserProfile]:
        """Profile for an authenticated user, or None if the directory has no entry.

        Raises UserAccessError for blocked or deactivated accounts.
        """
        user = await self.store.get(user_id)
        if user is not None and not user.can_sign_in:
            state = "blocked" if user.is_blocked else "deactivated"
            logger.warning(f"Refused request from {state} user {user_id}")
            raise UserAccessError(f"Account {user_id} is {state}")
        return user

    async def _update(self, user_id: str, **changes) -> UserProfile:
        user = await self.get_user(user_id)
        updated = await self.store.save(user.model_copy(update=changes))
        logger.info(f"Updated user {user_id}: {', '.join(f'{k}={v}' for k, v in changes.items())}")
        return updated

    @staticmethod
    def _refuse_own_account(actor_id: str, user_id: str, action: str) -> None:
        if actor_id == user_id:
            raise UserConflictError(f"Admins cannot {action} their own account")
