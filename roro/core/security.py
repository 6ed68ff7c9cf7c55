from jose import jwt

from roro.core.config import settings

ALGO = "HS256"


def decode_token(token: str) -> dict:
    """Verify an access token issued by the identity service sharing ``SECRET_KEY``."""
    return jwt.decode(token, settings.SECRET_KEY, algorithms=[ALGO])
