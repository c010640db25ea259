import re

from fastapi import Depends, Header, HTTPException, status
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from coaching_engine.db.models import User
from coaching_engine.db.session import get_db

USER_ID_PATTERN = re.compile(r"^[A-Za-z0-9_.:@-]{1,128}$")


def _bad_identity() -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Missing or invalid caller identity",
    )


def get_current_user(
    x_user_id: str = Header(default="", alias="X-User-Id"),
    db: Session = Depends(get_db),
) -> User:
    """Resolve the caller identity supplied by the upstream auth gate.

    The gate has already authenticated the caller; the id is trusted as-is and
    a ``User`` row is created on first sight.
    """
    user_id = x_user_id.strip()
    if not USER_ID_PATTERN.match(user_id):
        raise _bad_identity()

    user = db.get(User, user_id)
    if user is not None:
        return user
    user = User(id=user_id)
    db.add(user)
    try:
        db.commit()
    except IntegrityError:
        db.rollback()
        user = db.get(User, user_id)
        if user is None:
            raise _bad_identity()
        return user
    db.refresh(user)
    return user
