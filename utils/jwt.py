from datetime import datetime, timedelta, timezone
from typing import Optional
import jwt

ALGORITHM = "HS256"


def create_session_token(subject: str, secret: str, ttl_seconds: int, now: Optional[datetime] = None) -> str:
    now = now or datetime.now(timezone.utc)
    payload = {
        "sub": subject,
        "scope": "pin",
        "iat": int(now.timestamp()),
        "exp": int((now + timedelta(seconds=ttl_seconds)).timestamp()),
    }
    return jwt.encode(payload, secret, algorithm=ALGORITHM)


def decode_session_token(token: str, secret: str) -> dict:
    """Raises jwt.PyJWTError (ExpiredSignatureError included) on invalid tokens."""
    payload = jwt.decode(token, secret, algorithms=[ALGORITHM])
    if payload.get("scope") != "pin":
        raise jwt.InvalidTokenError("not a PIN session token")
    return payload
