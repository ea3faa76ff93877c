from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional

import jwt

from chatsync.config import Settings, get_settings
from chatsync.utils.ids import check_user_id


def create_access_token(user_id: str, settings: Optional[Settings] = None, expires_minutes: Optional[int] = None) -> str:
    settings = settings or get_settings()
    expire = datetime.now(timezone.utc) + timedelta(minutes=expires_minutes or settings.jwt_expire_minutes)
    payload = {"sub": user_id, "exp": expire}
    return jwt.encode(payload, settings.jwt_secret, algorithm=settings.jwt_algorithm)


def decode_access_token(token: str, settings: Optional[Settings] = None) -> Dict[str, Any]:
    """Decode and verify a token; raises ``jwt.InvalidTokenError`` when unusable."""
    settings = settings or get_settings()
    payload = jwt.decode(token, settings.jwt_secret, algorithms=[settings.jwt_algorithm])
    sub = payload.get("sub")
    if not isinstance(sub, str) or not sub:
        raise jwt.InvalidTokenError("token has no subject")
    return payload


def user_id_from_token(token: str, settings: Optional[Settings] = None) -> str:
    return check_user_id(decode_access_token(token, settings)["sub"])
