from dataclasses import dataclass
from typing import Optional

from itsdangerous import BadSignature, SignatureExpired, URLSafeTimedSerializer
from sqlalchemy.orm import Session

from config import get_settings
from models import User, UserRole


class AuthenticationError(Exception):
    pass


class PermissionDenied(Exception):
    pass


@dataclass(frozen=True)
class CurrentUser:
    id: int
    username: str
    name: str
    role: str


def _serializer() -> URLSafeTimedSerializer:
    settings = get_settings()
    return URLSafeTimedSerializer(settings.secret_key, salt="ledger-session")


def issue_token(user: User) -> str:
    return _serializer().dumps({"u": user.id, "n": user.username})


def resolve_current_user(session: Session, token: Optional[str]) -> CurrentUser:
    if not token:
        raise AuthenticationError("Not authenticated")
    max_age = get_settings().token_max_age_hours * 3600
    try:
        data = _serializer().loads(token, max_age=max_age)
    except SignatureExpired as exc:
        raise AuthenticationError("Session expired") from exc
    except BadSignature as exc:
        raise AuthenticationError("Invalid session") from exc

    user = session.get(User, data.get("u"))
    # A renamed or recreated account invalidates outstanding tokens.
    if not user or user.username != data.get("n"):
        raise AuthenticationError("Invalid session")
    return CurrentUser(
        id=user.id, username=user.username, name=user.name, role=user.role.value
    )


def ensure_admin(user: CurrentUser) -> CurrentUser:
    if user.role.upper() != UserRole.admin.value:
        raise PermissionDenied("Admin access required")
    return user
