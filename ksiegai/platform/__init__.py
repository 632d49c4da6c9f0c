from ksiegai.platform.security import (
    AuthContext,
    AuthorizationError,
    BaseRepository,
    ForbiddenFieldError,
    InMemoryPolicyBackend,
    get_policy_backend,
    set_policy_backend,
)

__all__ = [
    "AuthContext",
    "AuthorizationError",
    "ForbiddenFieldError",
    "BaseRepository",
    "InMemoryPolicyBackend",
    "set_policy_backend",
    "get_policy_backend",
]
