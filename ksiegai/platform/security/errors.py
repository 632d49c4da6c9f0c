from __future__ import annotations


class AuthorizationError(Exception):
    """Base authorization error for policy, scope and field-level enforcement failures."""


class ProfileScopeError(AuthorizationError):
    """Raised when a record belongs to a business profile outside the caller's scope."""

    def __init__(self, resource: str, business_profile_id: str, *, action: str) -> None:
        self.resource = resource
        self.business_profile_id = business_profile_id
        self.action = action
        super().__init__(f"Out-of-scope business_profile_id for resource '{resource}'")


class ForbiddenFieldError(AuthorizationError):
    """Raised when a payload contains fields the caller may not edit."""

    def __init__(self, resource: str, fields: list[str]) -> None:
        self.resource = resource
        self.fields = sorted(set(fields))
        super().__init__(f"Forbidden fields for resource '{resource}': {', '.join(self.fields)}")
