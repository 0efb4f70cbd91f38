"""
Failure Classification Module

Classifies transport failures as transient or fatal and maps remote
program rejections to session authorization failures.
"""

from .errors import (
    FAILURE_RULES,
    AssemblyError,
    AuthorizationFailure,
    ErrorContext,
    FailureClass,
    FailureClassification,
    FailureRule,
    PreconditionError,
    RecoverableError,
    RpcError,
    UnrecoverableError,
    authorization_failure_for,
    classify_failure_reason,
    extract_program_error_code,
    is_recoverable_authorization_error,
)

__all__ = [
    "FAILURE_RULES",
    "AssemblyError",
    "AuthorizationFailure",
    "ErrorContext",
    "FailureClass",
    "FailureClassification",
    "FailureRule",
    "PreconditionError",
    "RecoverableError",
    "RpcError",
    "UnrecoverableError",
    "authorization_failure_for",
    "classify_failure_reason",
    "extract_program_error_code",
    "is_recoverable_authorization_error",
]
