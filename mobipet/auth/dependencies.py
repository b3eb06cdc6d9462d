from dataclasses import dataclass

import jwt
from fastapi import Depends
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.orm import Session

from mobipet.auth import jwt_handler
from mobipet.core.errors import ForbiddenError, UnauthorizedError
from mobipet.database import get_db
from mobipet.models.user import ROLE_ADMIN, ROLE_PET_OWNER, ROLE_VET, ROLES, User

security = HTTPBearer(auto_error=False)


@dataclass(frozen=True)
class AuthContext:
    """The caller's identity and resolved role."""

    identity: str
    role: str
    email: str | None = None

    @property
    def is_vet(self) -> bool:
        return self.role == ROLE_VET

    @property
    def is_owner(self) -> bool:
        return self.role == ROLE_PET_OWNER

    @property
    def is_admin(self) -> bool:
        return self.role == ROLE_ADMIN


def resolve_role(payload: dict, user: User | None) -> str:
    if user is not None and user.role in ROLES:
        return user.role
    claimed_role = jwt_handler.role_from_claims(payload)
    if claimed_role in ROLES:
        return claimed_role
    return ROLE_PET_OWNER


def get_auth_context(
    credentials: HTTPAuthorizationCredentials | None = Depends(security),
    db: Session = Depends(get_db),
) -> AuthContext:
    if credentials is None or not credentials.credentials:
        raise UnauthorizedError('Missing authorization header.')

    try:
        payload = jwt_handler.decode_access_token(credentials.credentials)
    except jwt.PyJWTError as exc:
        raise UnauthorizedError('Invalid token.') from exc

    identity = payload.get("sub")
    if not identity:
        raise UnauthorizedError('Invalid token subject.')

    user = db.get(User, identity)
    return AuthContext(
        identity=identity,
        role=resolve_role(payload, user),
        email=(user.email if user is not None else None) or payload.get("email"),
    )


def require_roles(*roles: str):
    def dependency(context: AuthContext = Depends(get_auth_context)) -> AuthContext:
        if context.role not in roles:
            raise ForbiddenError()
        return context

    return dependency


require_vet = require_roles(ROLE_VET)
require_pet_owner = require_roles(ROLE_PET_OWNER)
require_admin = require_roles(ROLE_ADMIN)
