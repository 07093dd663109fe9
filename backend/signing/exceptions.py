"""
Error taxonomy for the signing coordinator.

Every error carries a stable ``code`` and the HTTP status the API layer
answers with, so views can turn any of them into a structured response.
"""

from rest_framework import status


class SigningError(Exception):
    """Base class for all reported signing errors."""

    code = 'signing_error'
    status_code = status.HTTP_400_BAD_REQUEST
    default_message = 'Signing request error'

    def __init__(self, message=None, **details):
        self.message = message or self.default_message
        self.details = details
        super().__init__(self.message)

    def as_dict(self):
        payload = {'error': self.message, 'code': self.code}
        if self.details:
            payload['details'] = self.details
        return payload


class InvalidRequest(SigningError):
    code = 'invalid_request'
    default_message = 'Invalid signing request'


class NotFound(SigningError):
    code = 'not_found'
    status_code = status.HTTP_404_NOT_FOUND
    default_message = 'Signing request not found'


class InvalidSignature(SigningError):
    code = 'invalid_signature'
    default_message = 'Signature does not match the signing message'


class AlreadySigned(SigningError):
    code = 'already_signed'
    status_code = status.HTTP_409_CONFLICT
    default_message = 'This signer slot is no longer pending'


class RequestClosed(SigningError):
    code = 'request_closed'
    status_code = status.HTTP_409_CONFLICT
    default_message = 'Signing request is no longer pending'


class OutOfTurn(SigningError):
    code = 'out_of_turn'
    status_code = status.HTTP_409_CONFLICT
    default_message = 'An earlier signer has not signed yet'


class NotCompleted(SigningError):
    code = 'not_completed'
    status_code = status.HTTP_409_CONFLICT
    default_message = 'Signing request is not completed'


class Conflict(SigningError):
    code = 'conflict'
    status_code = status.HTTP_409_CONFLICT
    default_message = 'Concurrent update contention, retry later'


class AlreadyFinalized(SigningError):
    """Raised internally when a final artifact already exists.

    Callers never see this as a failure: the finalizer catches it and hands
    back the existing ``artifact_ref``.
    """

    code = 'already_finalized'
    status_code = status.HTTP_200_OK
    default_message = 'Final artifact already generated'

    def __init__(self, artifact_ref, message=None):
        self.artifact_ref = artifact_ref
        super().__init__(message, artifact_ref=artifact_ref)


class FinalizationFailed(SigningError):
    code = 'finalization_failed'
    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
    default_message = 'Final artifact generation failed'

    def __init__(self, request_id, message=None):
        self.request_id = request_id
        super().__init__(message, request_id=str(request_id))
