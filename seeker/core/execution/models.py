"""
Submission models and types.
"""

from dataclasses import dataclass, field
from typing import List, Optional

from ..recovery.errors import FailureClass
from .endpoints import EndpointDescriptor


@dataclass
class SubmissionAttempt:
    """One send attempt against one endpoint. Diagnostics only."""
    endpoint: EndpointDescriptor
    attempt_number: int
    failure_reason: Optional[str] = None
    failure_class: Optional[FailureClass] = None
    probed: bool = False


@dataclass
class SubmissionResult:
    """Outcome of a send across the whole endpoint pool."""
    signature: Optional[str] = None
    failure_reason: Optional[str] = None
    failure_class: Optional[FailureClass] = None
    program_error_code: Optional[int] = None
    endpoint: Optional[EndpointDescriptor] = None   # Endpoint that accepted the transaction
    attempts: List[SubmissionAttempt] = field(default_factory=list)

    @property
    def succeeded(self) -> bool:
        return bool(self.signature)

    @property
    def attempt_count(self) -> int:
        return len(self.attempts)
