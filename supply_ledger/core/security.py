from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

import jwt

from supply_ledger.config import Settings
from supply_ledger.core.errors import Unauthenticated


@dataclass(frozen=True)
class Actor:
    account_id: int
    identity: str


def _get_bearer_token(authorization: Optional[str]) -> Optional[str]:
    if not authorization:
        return None
    parts = authorization.split()
    if len(parts) == 2 and parts[0].lower() == "bearer":
        return parts[1]
    return None


def _decode_jwt(token: str, settings: Settings) -> dict:
    if not settings.JWT_SECRET:
        raise Unauthenticated("JWT auth is not configured.")
    options = {"verify_aud": bool(settings.JWT_AUDIENCE)}
    try:
        return jwt.decode(
            token,
            settings.JWT_SECRET,
            algorithms=[settings.JWT_ALGORITHM],
            audience=settings.JWT_AUDIENCE,
            issuer=settings.JWT_ISSUER,
            options=options,
        )
    except jwt.ExpiredSignatureError as exc:
        raise Unauthenticated("Authentication token has expired.") from exc
    except jwt.PyJWTError as exc:
        raise Unauthenticated("Invalid authentication token.") from exc


def actor_from_claims(claims: dict) -> Actor:
    account_id = claims.get("account_id", claims.get("id"))
    identity = claims.get("sub") or claims.get("email") or claims.get("id")
    try:
        account_id = int(account_id)
    except (TypeError, ValueError) as exc:
        raise Unauthenticated("Token does not carry an account.") from exc
    if identity is None or not str(identity).strip():
        raise Unauthenticated("Token does not carry an identity.")
    return Actor(account_id=account_id, identity=str(identity).strip())


def authenticate_actor(
    authorization: Optional[str],
    cookie_token: Optional[str],
    settings: Settings,
) -> Actor:
    """Resolve the caller from the auth cookie, falling back to a bearer header."""
    token = cookie_token or _get_bearer_token(authorization)
    if not token:
        raise Unauthenticated("Access denied. No token provided.")
    return actor_from_claims(_decode_jwt(token, settings))


def issue_token(settings: Settings, *, account_id: int, identity: str, **claims) -> str:
    if not settings.JWT_SECRET:
        raise RuntimeError("JWT_SECRET is not configured")
    payload = {"account_id": account_id, "sub": identity, **claims}
    if settings.JWT_AUDIENCE:
        payload.setdefault("aud", settings.JWT_AUDIENCE)
    if settings.JWT_ISSUER:
        payload.setdefault("iss", settings.JWT_ISSUER)
    return jwt.encode(payload, settings.JWT_SECRET, algorithm=settings.JWT_ALGORITHM)


__all__ = ["Actor", "actor_from_claims", "authenticate_actor", "issue_token"]
