"""JWT token creation and decoding.

Tokens are issued by the platform's login service; this service only
verifies them.  `create_access_token` exists for the management CLI and
tests.

Token claims:
  - sub:          user ID
  - role:         user role string
  - permissions:  list of effective permission strings
  - theater_ids:  theaters the user may act on (absent for platform admins)
  - type:         "access"
  - exp:          expiry timestamp
"""

from datetime import datetime, timedelta, timezone

from jose import JWTError, jwt

from app.config import settings

ALGORITHM = settings.jwt_algorithm


def create_access_token(
    user_id: str,
    role: str,
    permissions: list[str],
    theater_ids: list[str] | None = None,
    expires_delta: timedelta | None = None,
) -> str:
    expire = datetime.now(timezone.utc) + (
        expires_delta or timedelta(minutes=settings.access_token_expire_minutes)
    )
    payload = {
        "sub": user_id,
        "role": role,
        "permissions": permissions,
        "type": "access",
        "exp": expire,
    }
    if theater_ids is not None:
        payload["theater_ids"] = theater_ids
    return jwt.encode(payload, settings.secret_key, algorithm=ALGORITHM)


def decode_token(token: str) -> dict:
    """Decode and validate a JWT. Returns empty dict on failure."""
    try:
        return jwt.decode(token, settings.secret_key, algorithms=[ALGORITHM])
    except JWTError:
        return {}
