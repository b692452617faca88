import time

from itsdangerous import BadSignature, URLSafeTimedSerializer

from config import get_settings
from services import get_current_user_id


def _serializer() -> URLSafeTimedSerializer:
    settings = get_settings()
    return URLSafeTimedSerializer(settings.csrf_secret, salt="ledger-csrf")


def generate_csrf_token(user_id: int = 0, max_age_hours: int = 2) -> str:
    user_id = user_id or get_current_user_id()
    issued = int(time.time())
    token_data = {"u": user_id, "ts": issued, "exp": issued + max_age_hours * 3600}
    return _serializer().dumps(token_data)


def validate_csrf_token(token: str, user_id: int = 0, max_age_hours: int = 2) -> bool:
    if not token:
        return False
    user_id = user_id or get_current_user_id()
    try:
        data = _serializer().loads(token, max_age=max_age_hours * 3600)
    except BadSignature:
        return False

    if data.get("u") != user_id:
        return False
    return int(time.time()) <= int(data.get("exp", 0))
