import hmac
from typing import Optional, Protocol

from itsdangerous import BadSignature, URLSafeTimedSerializer

from config import get_settings

COOKIE_NAME = "fintrack_session"
SESSION_MAX_AGE_SECS = 3600 * 24 * 7


class CredentialStore(Protocol):
    def verify(self, owner: str, secret: str) -> bool: ...


class StaticCredentialStore:
    """Credentials held in memory, usually loaded from ``FINTRACK_USERS``."""

    def __init__(self, users: dict[str, str]) -> None:
        self._users = dict(users)

    def verify(self, owner: str, secret: str) -> bool:
        expected = self._users.get(owner)
        if expected is None:
            return False
        return hmac.compare_digest(expected.encode(), secret.encode())


def default_credential_store() -> CredentialStore:
    return StaticCredentialStore(get_settings().users)


def _serializer() -> URLSafeTimedSerializer:
    settings = get_settings()
    return URLSafeTimedSerializer(settings.session_secret, salt="session")


def issue_session_token(owner: str) -> str:
    return _serializer().dumps({"o": owner})


def read_session_token(
    token: Optional[str], max_age: int = SESSION_MAX_AGE_SECS
) -> Optional[str]:
    if not token:
        return None
    try:
        data = _serializer().loads(token, max_age=max_age)
    except BadSignature:
        return None
    owner = data.get("o") if isinstance(data, dict) else None
    if not isinstance(owner, str) or not owner:
        return None
    return owner
