from __future__ import annotations


class IsmsRiskError(Exception):
    """Base exception with user-friendly message."""
    pass


class ConfigError(IsmsRiskError):
    pass


class ApiError(IsmsRiskError):
    pass


class AuthenticationError(ApiError):
    pass


class ValidationError(IsmsRiskError):
    """A required field is missing or outside its allowed values."""
    pass


class PreconditionError(IsmsRiskError):
    """The operation cannot start (no organization, no threat, unsaved risk)."""
    pass


class ReferentialIntegrityError(IsmsRiskError):
    pass


class WorkflowError(IsmsRiskError):
    """A stage transition or save action is not allowed from the current stage."""
    pass
