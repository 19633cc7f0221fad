"""Access policy gate.

Resolves the bearer token on a request to a ``users`` row and checks roles.
Tokens are issued by the external credential service (or ``library-admin
token`` in development) and carry the user id in the ``id`` claim.
"""

import logging
from datetime import timedelta

import jwt
from fastapi import Depends, HTTPException
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.orm import Session

from circulation.core.config import JWT_ALGORITHM, JWT_SECRET, JWT_TTL_DAYS
from circulation.core.database import get_db, utcnow
from circulation.models.models import STAFF_ROLES, Role, User

logger = logging.getLogger("library.auth")

bearer_scheme = HTTPBearer(auto_error=False)


def create_access_token(user: User, ttl: timedelta = None) -> str:
    expires = utcnow() + (ttl or timedelta(days=JWT_TTL_DAYS))
    payload = {
        "id": user.id,
        "email": user.email,
        "name": user.name,
        "role": user.role,
        "exp": expires,
    }
    return jwt.encode(payload, JWT_SECRET, algorithm=JWT_ALGORITHM)


def get_current_user(credentials: HTTPAuthorizationCredentials = Depends(bearer_scheme),
                     db: Session = Depends(get_db)) -> User:
    if credentials is None or not credentials.credentials:
        raise HTTPException(status_code=401, detail="Access token required")
    try:
        claims = jwt.decode(credentials.credentials, JWT_SECRET, algorithms=[JWT_ALGORITHM])
    except jwt.ExpiredSignatureError:
        raise HTTPException(status_code=401, detail="Token expired")
    except jwt.InvalidTokenError:
        raise HTTPException(status_code=401, detail="Invalid token")

    # re-read the user so that role changes and deletions take effect immediately
    user = db.query(User).filter(User.id == claims.get("id")).first()
    if not user:
        logger.warning(f"Token for unknown user id={claims.get('id')}")
        raise HTTPException(status_code=401, detail="Invalid or expired token")
    return user


def require_staff(user: User = Depends(get_current_user)) -> User:
    if user.role not in STAFF_ROLES:
        raise HTTPException(status_code=403, detail="Access denied. Admin or librarian required.")
    return user


def require_admin(user: User = Depends(get_current_user)) -> User:
    if user.role != Role.ADMIN.value:
        raise HTTPException(status_code=403, detail="Access denied. Admin required.")
    return user


def ensure_owner_or_staff(user: User, owner_id: int) -> None:
    if not user.is_staff and owner_id != user.id:
        raise HTTPException(status_code=403, detail="Access denied")
