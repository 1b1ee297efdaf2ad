from typing import Optional
from jose import ExpiredSignatureError, JWTError, jwt

from app.core.config import settings
from app.core.errors import Unauthorized
from app.schemas.auth import AuthenticatedUser
from app.core.logging import logger


def extract_bearer_token(authorization: Optional[str]) -> Optional[str]:
    """
    Pull the token out of an 'Authorization: Bearer <token>' header value.
    """
    if not authorization:
        return None
    scheme, _, token = authorization.partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        return None
    return token.strip()


# Supabase access token verification
def resolve_user(token: Optional[str]) -> AuthenticatedUser:
    """
    Decodes and verifies a Supabase access token and returns the identity it carries.

    Supabase signs access tokens with the project's JWT secret (HS256) and
    puts the user id in 'sub' and the audience 'authenticated' in 'aud'.

    Raises:
        Unauthorized: If the token is missing, malformed, expired or forged
    """
    if not token:
        raise Unauthorized("Access token not provided")

    if not settings.SUPABASE_JWT_SECRET:
        # Misconfiguration must never turn into "every token is valid"
        logger.error("jwt_secret_not_configured")
        raise Unauthorized("Invalid token")

    try:
        payload = jwt.decode(
            token,
            settings.SUPABASE_JWT_SECRET,
            algorithms=[settings.JWT_ALGORITHM],
            audience=settings.SUPABASE_JWT_AUDIENCE,
        )
    except ExpiredSignatureError:
        logger.info("expired_token_rejected", token_length=len(token))
        raise Unauthorized("Token expired")
    except JWTError as e:
        # If the signature is invalid or the claims are wrong, jose raises JWTError
        logger.warning("invalid_token_rejected", error=str(e), token_length=len(token))
        raise Unauthorized("Invalid token")

    subject = payload.get("sub") or ""
    if not subject:
        raise Unauthorized("Invalid token")

    app_metadata = payload.get("app_metadata") or {}
    return AuthenticatedUser(
        id=subject,
        email=(payload.get("email") or None),
        role=app_metadata.get("role") if isinstance(app_metadata, dict) else None,
    )
