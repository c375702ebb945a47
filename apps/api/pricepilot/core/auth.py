from dataclasses import dataclass
from typing import Any

from jose import JWTError, jwt
from starlette.requests import Request

from pricepilot.core.config import get_settings
from pricepilot.shops.service import normalize_shop_domain


@dataclass
class AuthUser:
    sub: str
    roles: list[str]
    shop_domain: str | None = None


def bearer_token(request: Request) -> str:
    auth_header = request.headers.get("authorization", "")
    return auth_header.replace("Bearer ", "") if auth_header.startswith("Bearer ") else ""


def decode_session_token(token: str) -> dict[str, Any] | None:
    """Verify an admin session token; ``None`` when it is missing or invalid.

    Embedded-app session tokens carry the API key in ``aud``. It is only
    checked when ``SHOPIFY_API_KEY`` is configured.
    """
    if not token:
        return None
    settings = get_settings()
    try:
        return jwt.decode(
            token,
            settings.jwt_secret,
            algorithms=[settings.jwt_algorithm],
            audience=settings.shopify_api_key,
            options={"verify_aud": settings.shopify_api_key is not None},
        )
    except JWTError:
        return None


def shop_from_claims(payload: dict[str, Any]) -> str | None:
    dest = payload.get("dest")
    if not isinstance(dest, str) or not dest.strip():
        return None
    return normalize_shop_domain(dest)


async def get_current_user(request: Request) -> AuthUser:
    payload = decode_session_token(bearer_token(request))
    if payload is None:
        # TODO: Reject invalid tokens once every admin route requires a session token.
        return AuthUser(sub="anonymous", roles=["guest"])

    subject = str(payload.get("sub", "anonymous"))
    roles = payload.get("roles", ["user"])
    if not isinstance(roles, list):
        roles = ["user"]
    context = getattr(request.state, "context", None)
    if context is not None:
        context.user_id = subject
    return AuthUser(sub=subject, roles=[str(role) for role in roles], shop_domain=shop_from_claims(payload))
