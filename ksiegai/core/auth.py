from dataclasses import dataclass, field

from jose import JWTError, jwt
from starlette.requests import Request

from ksiegai.core.config import get_settings


@dataclass
class AuthUser:
    sub: str
    roles: list[str]
    business_profile_ids: list[str] = field(default_factory=list)


def _claim_list(payload: dict, key: str, default: list[str]) -> list[str]:
    value = payload.get(key, default)
    if not isinstance(value, list):
        return default
    return [str(item) for item in value]


async def get_current_user(request: Request) -> AuthUser:
    auth_header = request.headers.get("authorization", "")
    token = auth_header.replace("Bearer ", "") if auth_header.startswith("Bearer ") else ""

    if not token:
        return AuthUser(sub="anonymous", roles=["guest"])

    settings = get_settings()
    try:
        payload = jwt.decode(token, settings.jwt_secret, algorithms=[settings.jwt_algorithm])
    except JWTError:
        return AuthUser(sub="anonymous", roles=["guest"])

    subject = str(payload.get("sub", "anonymous"))
    context = getattr(request.state, "context", None)
    if context is not None:
        context.user_id = subject
    return AuthUser(
        sub=subject,
        roles=_claim_list(payload, "roles", ["user"]),
        business_profile_ids=_claim_list(payload, "business_profiles", []),
    )
