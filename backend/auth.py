from datetime import timedelta
from typing import Optional

from fastapi import Depends, Header, HTTPException
from jose import JWTError, jwt

from constants import ACCESS_TOKEN_EXPIRE_MINUTES, ALGORITHM, SECRET_KEY
from datetime_utils import now_utc
from error_utils import AssessmentError, UserAccessError, raise_for_domain_error
from models import UserRole
from services import Services, get_services


def create_access_token(user_id: str, role: UserRole, expires_delta: Optional[timedelta] = None,
                        extra_claims: Optional[dict] = None) -> str:
    """Create JWT access token"""
    to_encode = dict(extra_claims or {})
    expire = now_utc() + (expires_delta or timedelta(minutes=ACCESS_TOKEN_EXPIRE_MINUTES))
    to_encode.update({"sub": user_id, "role": UserRole(role).value, "exp": expire})
    return jwt.encode(to_encode, SECRET_KEY, algorithm=ALGORITHM)


async def get_current_user(authorization: Optional[str] = Header(None),
                           services: Services = Depends(get_services)) -> dict:
    """Verify the bearer token and return {user_id, role, name}.

    A directory profile, when there is one, overrides the token's role and
    refuses blocked or deactivated accounts.
    """
    if not authorization or not authorization.startswith("Bearer "):
        raise HTTPException(status_code=401, detail="Missing or invalid authorization header")

    token = authorization.split(" ", 1)[1]
    try:
        payload = jwt.decode(token, SECRET_KEY, algorithms=[ALGORITHM])
    except JWTError:
        raise HTTPException(status_code=401, detail="Invalid or expired token")

    user_id = payload.get("sub")
    if not user_id:
        raise HTTPException(status_code=401, detail="Invalid token")
    try:
        role = UserRole(payload.get("role", UserRole.STUDENT.value))
    except ValueError:
        raise HTTPException(status_code=403, detail="Unknown role")

    try:
        profile = await services.users.check_access(user_id)
    except UserAccessError as e:
        raise HTTPException(status_code=403, detail=str(e))
    except AssessmentError as e:
        raise_for_domain_error(e)

    if profile is not None:
        return {"user_id": user_id, "role": profile.role, "name": profile.full_name}
    return {"user_id": user_id, "role": role, "name": payload.get("name")}


def require_role(*roles: UserRole):
    """Dependency factory: only let the listed roles through."""
    allowed = set(roles)

    async def _check(user: dict = Depends(get_current_user)) -> dict:
        if user["role"] not in allowed:
            raise HTTPException(status_code=403, detail="Insufficient permissions")
        return user

    return _check
