from ksiegai.platform.security.context import AuthContext
from ksiegai.platform.security.errors import AuthorizationError, ForbiddenFieldError, ProfileScopeError
from ksiegai.platform.security.fls import (
    MASKED_FIELD_VALUE,
    apply_fls_read,
    apply_fls_read_many,
    mask_field_value,
    validate_fls_write,
)
from ksiegai.platform.security.repository import BaseRepository
from ksiegai.platform.security.rls import apply_rls_filter, scoped_profile_ids, validate_rls_read_scope, validate_rls_write
from ksiegai.platform.security.policies import (
    DEFAULT_ROLE_PERMISSIONS,
    FieldDecision,
    InMemoryPolicyBackend,
    PolicyBackend,
    set_policy_backend,
    get_policy_backend,
)

__all__ = [
    "AuthContext",
    "AuthorizationError",
    "ForbiddenFieldError",
    "ProfileScopeError",
    "mask_field_value",
    "MASKED_FIELD_VALUE",
    "BaseRepository",
    "apply_rls_filter",
    "apply_fls_read",
    "apply_fls_read_many",
    "scoped_profile_ids",
    "validate_rls_read_scope",
    "validate_rls_write",
    "validate_fls_write",
    "DEFAULT_ROLE_PERMISSIONS",
    "FieldDecision",
    "PolicyBackend",
    "InMemoryPolicyBackend",
    "set_policy_backend",
    "get_policy_backend",
]
