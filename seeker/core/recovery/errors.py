"""
Error Classification

Defines the failure taxonomy of the session engine.
Failures are classified as transient (retry on the same endpoint) or fatal
(move on, or give up), and remote program rejections are mapped to the
closed set of session authorization failures.
"""

import re
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Optional, Tuple

from ..program.errors import ProgramErrorCode


class FailureClass(str, Enum):
    """Semantic class of a transport or submission failure."""

    CONNECTION = "connection"                # Refused/reset connections, gateway errors
    TIMEOUT = "timeout"                      # Request exceeded its bounded wait
    RATE_LIMIT = "rate_limit"                # 429 / throttling
    MALFORMED_RESPONSE = "malformed_response"  # Unparseable or truncated response
    SIMULATION_REJECTION = "simulation_rejection"  # Preflight rejected, not a program error
    PROGRAM_ERROR = "program_error"          # Remote program returned a custom error code
    ASSEMBLY = "assembly"                    # Wire layout rejected (account sanitation)
    UNKNOWN = "unknown"                      # Unclassified


class AuthorizationFailure(str, Enum):
    """Session authorization failures reported by the remote program."""

    EXPIRED = "expired"
    INACTIVE = "inactive"
    INSTRUCTION_NOT_ALLOWED = "instruction_not_allowed"
    SPEND_CAP_EXCEEDED = "spend_cap_exceeded"
    UNAUTHORIZED = "unauthorized"
    UNMAPPED = "unmapped"


@dataclass(frozen=True)
class FailureRule:
    """One row of the classification table."""

    pattern: str
    failure_class: FailureClass
    transient: bool


@dataclass
class FailureClassification:
    """Result of classifying a failure reason."""

    failure_class: FailureClass
    transient: bool
    reason: str = ""
    program_error_code: Optional[int] = None
    matched_pattern: Optional[str] = None

    @property
    def is_fatal(self) -> bool:
        return not self.transient

    @property
    def is_malformed_response(self) -> bool:
        return self.matched_pattern == MALFORMED_RESPONSE_PATTERN


# The raw-transport probe only runs for this exact signature: the node most
# likely accepted the transaction but the client could not parse the reply.
MALFORMED_RESPONSE_PATTERN = "unable to parse json"

# First match wins, so program errors (which arrive wrapped in a
# "Transaction simulation failed" message) come before simulation rejections.
FAILURE_RULES: Tuple[FailureRule, ...] = (
    FailureRule(MALFORMED_RESPONSE_PATTERN, FailureClass.MALFORMED_RESPONSE, True),
    FailureRule("header part of a frame could not be read", FailureClass.MALFORMED_RESPONSE, True),
    FailureRule("failed to sanitize", FailureClass.ASSEMBLY, False),
    FailureRule("sanitize accounts", FailureClass.ASSEMBLY, False),
    FailureRule("custom program error", FailureClass.PROGRAM_ERROR, False),
    FailureRule("timed out", FailureClass.TIMEOUT, True),
    FailureRule("timeout", FailureClass.TIMEOUT, True),
    FailureRule("429", FailureClass.RATE_LIMIT, True),
    FailureRule("too many requests", FailureClass.RATE_LIMIT, True),
    FailureRule("rate limit", FailureClass.RATE_LIMIT, True),
    FailureRule("connection refused", FailureClass.CONNECTION, True),
    FailureRule("connection reset", FailureClass.CONNECTION, True),
    FailureRule("connecterror", FailureClass.CONNECTION, True),
    FailureRule("connection failure", FailureClass.CONNECTION, True),
    FailureRule("gateway", FailureClass.CONNECTION, True),
    FailureRule("temporarily unavailable", FailureClass.CONNECTION, True),
    FailureRule("service unavailable", FailureClass.CONNECTION, True),
    FailureRule("could not predict balance changes", FailureClass.SIMULATION_REJECTION, False),
    FailureRule("simulation failed", FailureClass.SIMULATION_REJECTION, False),
    FailureRule("insufficient funds", FailureClass.SIMULATION_REJECTION, False),
)

_PROGRAM_ERROR_RE = re.compile(r"custom program error:\s*0x([0-9a-f]+)", re.IGNORECASE)

RECOVERABLE_AUTHORIZATION_CODES: Dict[int, AuthorizationFailure] = {
    ProgramErrorCode.SESSION_EXPIRED: AuthorizationFailure.EXPIRED,
    ProgramErrorCode.SESSION_INACTIVE: AuthorizationFailure.INACTIVE,
    ProgramErrorCode.SESSION_INSTRUCTION_NOT_ALLOWED: AuthorizationFailure.INSTRUCTION_NOT_ALLOWED,
    ProgramErrorCode.SESSION_SPEND_CAP_EXCEEDED: AuthorizationFailure.SPEND_CAP_EXCEEDED,
    ProgramErrorCode.UNAUTHORIZED: AuthorizationFailure.UNAUTHORIZED,
}


def extract_program_error_code(reason: Optional[str]) -> Optional[int]:
    """Pull the custom program error code out of an RPC failure reason."""
    if not reason:
        return None
    match = _PROGRAM_ERROR_RE.search(reason)
    if not match:
        return None
    return int(match.group(1), 16)


def classify_failure_reason(reason: Optional[str]) -> FailureClassification:
    """
    Classify a failure reason string.

    An empty reason is treated as transient: the endpoint returned nothing
    useful, which is what a dropped connection looks like. Reasons that match
    no rule are fatal for the current endpoint.
    """
    text = (reason or "").strip()
    code = extract_program_error_code(text)

    if not text:
        return FailureClassification(
            failure_class=FailureClass.CONNECTION,
            transient=True,
            reason=text,
        )

    lowered = text.lower()
    for rule in FAILURE_RULES:
        if rule.pattern in lowered:
            return FailureClassification(
                failure_class=rule.failure_class,
                transient=rule.transient,
                reason=text,
                program_error_code=code,
                matched_pattern=rule.pattern,
            )

    return FailureClassification(
        failure_class=FailureClass.UNKNOWN,
        transient=False,
        reason=text,
        program_error_code=code,
    )


def authorization_failure_for(code: Optional[int]) -> Optional[AuthorizationFailure]:
    """Map a program error code to an authorization failure (None when no code)."""
    if code is None:
        return None
    return RECOVERABLE_AUTHORIZATION_CODES.get(code, AuthorizationFailure.UNMAPPED)


def is_recoverable_authorization_error(code: Optional[int]) -> bool:
    failure = authorization_failure_for(code)
    return failure is not None and failure is not AuthorizationFailure.UNMAPPED


@dataclass
class ErrorContext:
    """Additional context about an error."""

    failure_class: FailureClass = FailureClass.UNKNOWN
    recoverable: bool = True
    suggested_action: Optional[str] = None
    endpoint: Optional[str] = None
    details: Dict[str, Any] = field(default_factory=dict)


class RecoverableError(Exception):
    """
    Base class for errors that can be retried.

    These are transport problems: timeouts, rate limits, dropped or
    unparseable responses.
    """

    def __init__(
        self,
        message: str,
        failure_class: FailureClass = FailureClass.UNKNOWN,
        context: Optional[ErrorContext] = None,
    ):
        super().__init__(message)
        self.message = message
        self.failure_class = failure_class
        self.context = context or ErrorContext(failure_class=failure_class, recoverable=True)


class UnrecoverableError(Exception):
    """
    Base class for errors that must not be retried automatically.

    - Structural assembly failures
    - Precondition failures (wallet not connected, empty capability mask)
    """

    def __init__(
        self,
        message: str,
        failure_class: FailureClass = FailureClass.UNKNOWN,
        context: Optional[ErrorContext] = None,
    ):
        super().__init__(message)
        self.message = message
        self.failure_class = failure_class
        self.context = context or ErrorContext(failure_class=failure_class, recoverable=False)


class RpcError(RecoverableError):
    """
    A JSON-RPC call failed.

    The message is the free-text reason used for classification; whether it
    is actually transient is decided by classify_failure_reason.
    """

    def __init__(
        self,
        reason: str,
        endpoint: Optional[str] = None,
        server_error_code: Optional[int] = None,
    ):
        classification = classify_failure_reason(reason)
        super().__init__(
            reason,
            failure_class=classification.failure_class,
            context=ErrorContext(
                failure_class=classification.failure_class,
                recoverable=classification.transient,
                endpoint=endpoint,
                details={"server_error_code": server_error_code} if server_error_code else {},
            ),
        )
        self.reason = reason
        self.endpoint = endpoint
        self.server_error_code = server_error_code


class AssemblyError(UnrecoverableError):
    """Multi-signer wire assembly failed; retrying the same bytes cannot help."""

    def __init__(
        self,
        message: str,
        signer: Optional[str] = None,
        step: Optional[str] = None,
    ):
        super().__init__(
            message,
            failure_class=FailureClass.ASSEMBLY,
            context=ErrorContext(
                failure_class=FailureClass.ASSEMBLY,
                recoverable=False,
                suggested_action="Inspect signer set and signature slots",
                details={"signer": signer, "step": step},
            ),
        )
        self.signer = signer
        self.step = step


class PreconditionError(UnrecoverableError):
    """A local precondition failed before any network call was made."""

    def __init__(self, message: str):
        super().__init__(
            message,
            context=ErrorContext(
                recoverable=False,
                suggested_action="Fix the caller state and try again",
            ),
        )
