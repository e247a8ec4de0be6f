"""JWT verification.

Learn: JWT (JSON Web Token) provides stateless authentication. The
websocket handshake cannot carry an Authorization header from a browser,
so the token arrives as a ?token= query param and is verified here.
"""

import jwt

from findme.config import settings


class TokenError(Exception):
    """Raised when token verification fails."""


def verify_token(token: str) -> dict:
    """Verify and decode a JWT token.

    Returns the payload dict on success.
    Raises TokenError on failure.
    """
    try:
        payload = jwt.decode(
            token, settings.jwt_secret, algorithms=[settings.jwt_algorithm]
        )
    except jwt.ExpiredSignatureError:
        raise TokenError("Token has expired")
    except jwt.InvalidTokenError as e:
        raise TokenError(f"Invalid token: {e}")

    if not payload.get("sub"):
        raise TokenError("Token has no subject")
    return payload
