import time
from typing import Optional

from itsdangerous import BadSignature, URLSafeSerializer

from config import get_settings


def _serializer() -> URLSafeSerializer:
    settings = get_settings()
    return URLSafeSerializer(settings.token_secret, salt="api-token")


def issue_token(user_id: int, max_age_hours: Optional[int] = None) -> str:
    if max_age_hours is None:
        max_age_hours = get_settings().token_max_age_hours
    timestamp = int(time.time())
    expiry = timestamp + (max_age_hours * 3600)

    token_data = {"u": user_id, "ts": timestamp, "exp": expiry}

    return _serializer().dumps(token_data)


def read_token(token: str) -> Optional[int]:
    """User id carried by a valid, unexpired token, else None."""
    try:
        data = _serializer().loads(token)
    except BadSignature:
        return None

    if not isinstance(data, dict):
        return None

    if int(time.time()) > data.get("exp", 0):
        return None

    user_id = data.get("u")
    if not isinstance(user_id, int):
        return None
    return user_id


def user_id_from_header(authorization: Optional[str]) -> Optional[int]:
    if not authorization or not authorization.startswith("Bearer "):
        return None
    return read_token(authorization[len("Bearer ") :].strip())
