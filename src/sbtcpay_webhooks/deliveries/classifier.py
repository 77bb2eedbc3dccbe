"""Outcome classification for a single delivery attempt."""

import enum
from dataclasses import dataclass
from typing import Optional, Protocol

import httpx


class OutcomeKind(str, enum.Enum):
    SUCCESS = "success"
    TRANSIENT = "transient"
    TERMINAL = "terminal"


@dataclass
class DeliveryOutcome:
    kind: OutcomeKind
    status_code: Optional[int] = None
    body: Optional[str] = None
    error: Optional[str] = None

    @property
    def succeeded(self) -> bool:
        return self.kind is OutcomeKind.SUCCESS


class OutcomeClassifier(Protocol):
    def classify(
        self,
        response: Optional[httpx.Response] = None,
        error: Optional[Exception] = None,
    ) -> DeliveryOutcome: ...


def _error_outcome(error: Optional[Exception]) -> DeliveryOutcome:
    message = str(error) if error is not None else "No response"
    return DeliveryOutcome(OutcomeKind.TRANSIENT, error=message or type(error).__name__)


class StatusCodeClassifier:
    """2xx is success, 410 Gone is terminal, everything else is retried."""

    terminal_codes = frozenset({410})

    def classify(self, response=None, error=None) -> DeliveryOutcome:
        if response is None:
            return _error_outcome(error)
        code = response.status_code
        if 200 <= code < 300:
            return DeliveryOutcome(OutcomeKind.SUCCESS, code, response.text)
        kind = OutcomeKind.TERMINAL if code in self.terminal_codes else OutcomeKind.TRANSIENT
        return DeliveryOutcome(kind, code, response.text, f"HTTP {code}")


class AnyResponseClassifier:
    """Any completed HTTP response counts as delivered, whatever its status."""

    def classify(self, response=None, error=None) -> DeliveryOutcome:
        if response is None:
            return _error_outcome(error)
        return DeliveryOutcome(OutcomeKind.SUCCESS, response.status_code, response.text)


def get_classifier(policy: str) -> OutcomeClassifier:
    if policy == "2xx":
        return StatusCodeClassifier()
    if policy == "any_response":
        return AnyResponseClassifier()
    raise ValueError(f"Unknown success policy: {policy!r}")
