"""
Error taxonomy for the instant jobs engine.

Every public engine operation either returns the updated record or raises
one of these. Handlers turn them into API Gateway responses using
``status_code``; ``retryable`` tells the caller whether re-issuing the same
call can succeed.
"""


class InstantJobsError(Exception):
    """Base class for all typed engine errors."""
    status_code = 500
    retryable = False

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message

    def to_dict(self) -> dict:
        return {
            'error': type(self).__name__,
            'message': self.message,
            'retryable': self.retryable,
        }


class NotFound(InstantJobsError):
    """Task, application or message id is unknown."""
    status_code = 404


class Forbidden(InstantJobsError):
    """Caller is not the task's requester or selected worker."""
    status_code = 403


class InvalidState(InstantJobsError):
    """Operation is illegal for the record's current status."""
    status_code = 409


class Conflict(InstantJobsError):
    """A concurrent transition won the compare-and-swap race."""
    status_code = 409
    retryable = True


class ExternalServiceFailure(InstantJobsError):
    """Escrow custodian or notification sink failed or timed out."""
    status_code = 502
    retryable = True


class ValidationError(InstantJobsError):
    """Malformed input."""
    status_code = 400


class ConditionFailed(Exception):
    """
    Raised by a record store when a conditional write's expectation does
    not hold. Internal to the store/engine boundary; the engine translates
    it into Conflict or InvalidState.
    """
