"""
Exception hierarchy.

Nothing here is fatal to a learner's session: validation errors block a
submission before any network call, collaborator errors degrade to a
non-penalizing default or to "no remediation", and persistence errors are
logged and retried by the next heartbeat.
"""


class LearnLoopError(Exception):
    """Base class for all learnloop errors."""


class ValidationError(LearnLoopError):
    """Learner input was rejected (missing confidence, empty answer, ...)."""


class InvalidGrade(ValidationError):
    """A grade outside 0-100 was supplied."""


class InvalidTransition(LearnLoopError):
    """An operation was attempted in a state that does not allow it."""


class ServiceError(LearnLoopError):
    """An external collaborator failed."""


class RateLimited(ServiceError):
    """The collaborator rejected the call with HTTP 429."""


class PaymentRequired(ServiceError):
    """The collaborator rejected the call with HTTP 402."""


class ServiceUnavailable(ServiceError):
    """The collaborator was unreachable or kept failing."""


class InvalidResponse(ServiceError):
    """The collaborator replied with something we could not use."""


class GradingServiceError(ServiceError):
    """The grading collaborator could not produce a grade."""


class RemediationServiceError(ServiceError):
    """Misconception detection or remediation generation failed."""


class PersistenceError(LearnLoopError):
    """A store read or write failed."""
