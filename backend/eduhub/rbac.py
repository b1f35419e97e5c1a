from fastapi import Depends, HTTPException, status
from eduhub.models import Role, User
from eduhub.deps import get_current_active_user
from typing import List


def require_role(required_role: Role):
    """Dependency to require a specific role"""
    def dependency(current_user: User = Depends(get_current_active_user)) -> User:
        if current_user.role != required_role:
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail=f"{required_role.value.capitalize()} role required"
            )
        return current_user
    return dependency


def require_any_role(required_roles: List[Role]):
    """Dependency to require any of the specified roles"""
    def dependency(current_user: User = Depends(get_current_active_user)) -> User:
        if current_user.role not in required_roles:
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail=f"Access denied. Required roles: {[r.value for r in required_roles]}"
            )
        return current_user
    return dependency


require_student = require_role(Role.STUDENT)
require_admin = require_role(Role.ADMIN)
require_trainer_or_admin = require_any_role([Role.TRAINER, Role.ADMIN, Role.PRINCIPAL])
