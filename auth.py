import time
from typing import Optional

from itsdangerous import BadSignature, URLSafeTimedSerializer

from config import get_settings


def _serializer() -> URLSafeTimedSerializer:
    settings = get_settings()
    return URLSafeTimedSerializer(settings.auth_secret, salt="session-token")


def issue_session_token(user_id: str, max_age_hours: Optional[int] = None) -> str:
    settings = get_settings()
    hours = max_age_hours if max_age_hours is not None else settings.auth_max_age_hours
    timestamp = int(time.time())
    token_data = {"u": user_id, "exp": timestamp + hours * 3600}
    return _serializer().dumps(token_data)


def read_session_token(token: Optional[str]) -> Optional[str]:
    """Return the user id a token was issued for, or None if it is not valid."""
    if not token:
        return None
    settings = get_settings()
    try:
        data = _serializer().loads(token, max_age=settings.auth_max_age_hours * 3600)
    except BadSignature:
        return None

    if not isinstance(data, dict):
        return None
    user_id = data.get("u")
    if not isinstance(user_id, str) or not user_id:
        return None
    if int(time.time()) > int(data.get("exp", 0)):
        return None
    return user_id
