from rest_framework import serializers, status
from rest_framework.exceptions import APIException


class InvalidTransition(APIException):
    status_code = status.HTTP_409_CONFLICT
    default_detail = 'This operation is not allowed in the current state.'
    default_code = 'invalid_transition'


class InvalidExtension(serializers.ValidationError):
    """New end date does not extend the stay."""


class OperationFailed(APIException):
    """A multi-step operation stopped partway.

    ``compensated`` lists the steps that were undone, ``inconsistent`` the
    steps whose undo failed and need an operator to look at them.
    """

    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
    default_code = 'operation_failed'

    def __init__(self, operation, failed_step, compensated=(), inconsistent=(), cause=None):
        self.operation = operation
        self.failed_step = failed_step
        self.compensated = list(compensated)
        self.inconsistent = list(inconsistent)
        self.cause = cause
        message = f'{operation} failed at step "{failed_step}"'
        if self.inconsistent:
            message += '; could not undo: ' + ', '.join(self.inconsistent)
        super().__init__({
            'detail': message,
            'operation': operation,
            'failed_step': failed_step,
            'compensated': self.compensated,
            'inconsistent': self.inconsistent,
        })
