from __future__ import annotations

from typing import Any

from jose import JWTError, jwt

from tenant_rbac.configs.settings import Settings
from tenant_rbac.errors import AuthError
from tenant_rbac.configs.logging_config import get_logger

log = get_logger(__name__)


def decode_token(token: str, settings: Settings) -> dict[str, Any]:
    """
    Decode and validate the session JWT issued by the identity provider.

    HS256 with the provider's shared secret. Audience is checked only when
    configured.
    """
    try:
        options = {"verify_aud": settings.jwt_audience is not None}
        claims = jwt.decode(
            token,
            settings.jwt_secret,
            algorithms=[settings.jwt_alg],
            audience=settings.jwt_audience,
            issuer=settings.jwt_issuer,
            options=options,
        )
        log.debug("jwt.decode ok sub=%s", claims.get("sub"))
        return claims
    except JWTError as e:
        log.info("jwt.decode failed error=%s", str(e))
        raise AuthError("invalid token") from e
