"""
Error taxonomy for the generation pipeline.

Admission-time errors (Unauthorized, NotFound, InvalidInput) reach the caller
as 4xx responses. Provider-side errors are never raised to a client: the
worker and the callback reconciler catch them and record str(err) on the
failed Job.
"""


class GenQueueError(Exception):
    code = "error"
    status_code = 500

    def __init__(self, message: str = ""):
        super().__init__(message or self.code)
        self.message = message or self.code


class Unauthorized(GenQueueError):
    code = "unauthorized"
    status_code = 401


class NotFound(GenQueueError):
    code = "not_found"
    status_code = 404


class InvalidInput(GenQueueError):
    code = "invalid_input"
    status_code = 400


class ProviderError(GenQueueError):
    """Base for failures that end a Job in `failed`."""
    code = "provider_error"
    status_code = 502


class ProviderSubmitFailed(ProviderError):
    code = "provider_submit_failed"


class ProviderTimeout(ProviderError):
    code = "provider_timeout"
    status_code = 504


class ProviderReportedFailure(ProviderError):
    code = "provider_reported_failure"


class PersistenceFailed(ProviderError):
    code = "persistence_failed"


class InvalidTransition(Exception):
    """A caller asked the state machine for an edge that does not exist."""
