import uuid
from dataclasses import dataclass

from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request

from ksiegai.context import reset_business_profile_id, set_business_profile_id

PROFILE_HEADER = "x-business-profile-id"


@dataclass
class RequestContext:
    request_id: str
    correlation_id: str
    business_profile_id: str | None
    user_id: str | None = None


def _parse_profile_id(raw: str | None) -> str | None:
    if raw is None or not raw.strip():
        return None
    return str(uuid.UUID(raw.strip()))


class RequestContextMiddleware(BaseHTTPMiddleware):
    """Attaches a RequestContext to ``request.state`` and binds the active business profile for logging."""

    async def dispatch(self, request: Request, call_next):  # type: ignore[no-untyped-def]
        correlation_id = getattr(request.state, "correlation_id", None) or ""
        try:
            business_profile_id = _parse_profile_id(request.headers.get(PROFILE_HEADER))
        except ValueError:
            return JSONResponse(
                status_code=400,
                content={"detail": "invalid X-Business-Profile-Id header", "correlation_id": correlation_id or None},
            )

        request.state.context = RequestContext(
            request_id=uuid.uuid4().hex,
            correlation_id=correlation_id,
            business_profile_id=business_profile_id,
        )
        token = set_business_profile_id(business_profile_id)
        try:
            response = await call_next(request)
        finally:
            reset_business_profile_id(token)
        response.headers["x-request-id"] = request.state.context.request_id
        return response
