"""
Error taxonomy shared by the API and the ledger service.

Service code raises the APIError subclasses below; `api_exception_handler`
(wired through REST_FRAMEWORK['EXCEPTION_HANDLER']) turns them, DRF's own
exceptions and database integrity failures into `{'error': message}`
responses. Unexpected exceptions are logged and reported as a generic 500.
"""
import logging

from django.core.exceptions import PermissionDenied
from django.db import IntegrityError
from django.http import Http404
from rest_framework import exceptions as drf_exceptions
from rest_framework import status
from rest_framework.response import Response
from rest_framework.views import set_rollback

logger = logging.getLogger(__name__)


class APIError(Exception):
    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
    default_message = 'Internal server error'

    def __init__(self, message=None):
        self.message = message or self.default_message
        super().__init__(self.message)


class ValidationError(APIError):
    status_code = status.HTTP_400_BAD_REQUEST
    default_message = 'Invalid input'


class InsufficientFundsError(APIError):
    status_code = status.HTTP_400_BAD_REQUEST
    default_message = 'Insufficient balance for this transaction'


class NotFoundError(APIError):
    status_code = status.HTTP_404_NOT_FOUND
    default_message = 'Record not found'


class ConflictError(APIError):
    status_code = status.HTTP_409_CONFLICT
    default_message = 'A record with this value already exists'


class Unauthorized(APIError):
    status_code = status.HTTP_401_UNAUTHORIZED
    default_message = 'Unauthorized'


class InternalError(APIError):
    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
    default_message = 'Internal server error'


def error_response(message, status_code=status.HTTP_400_BAD_REQUEST, details=None):
    """Build the `{'error': ...}` body every failing endpoint returns"""
    data = {'error': message}
    if details is not None:
        data['details'] = details
    return Response(data, status=status_code)


def _first_error_message(detail):
    """Pull a human-readable message out of a serializer error structure"""
    if isinstance(detail, dict):
        for field, value in detail.items():
            message = _first_error_message(value)
            if field == 'non_field_errors':
                return message
            return f"{field}: {message}"
    if isinstance(detail, (list, tuple)) and detail:
        return _first_error_message(detail[0])
    return str(detail)


def api_exception_handler(exc, context):
    """Map every exception raised inside a DRF view onto an error response"""
    view = context.get('view')
    view_name = view.__class__.__name__ if view else 'unknown'
    set_rollback()

    if isinstance(exc, InternalError):
        logger.error(f"Internal error in {view_name}: {exc.message}", exc_info=exc.__cause__ or exc)
        return error_response(InternalError.default_message, exc.status_code)

    if isinstance(exc, APIError):
        return error_response(exc.message, exc.status_code)

    if isinstance(exc, IntegrityError):
        logger.warning(f"Integrity error in {view_name}: {exc}")
        return error_response(ConflictError.default_message, status.HTTP_409_CONFLICT)

    if isinstance(exc, (Http404, drf_exceptions.NotFound)):
        return error_response(NotFoundError.default_message, status.HTTP_404_NOT_FOUND)

    if isinstance(exc, (PermissionDenied, drf_exceptions.PermissionDenied)):
        return error_response('You do not have permission to perform this action', status.HTTP_403_FORBIDDEN)

    if isinstance(exc, (drf_exceptions.NotAuthenticated, drf_exceptions.AuthenticationFailed)):
        return error_response(Unauthorized.default_message, status.HTTP_401_UNAUTHORIZED)

    if isinstance(exc, drf_exceptions.ValidationError):
        return error_response(_first_error_message(exc.detail), status.HTTP_400_BAD_REQUEST, details=exc.detail)

    if isinstance(exc, drf_exceptions.APIException):
        return error_response(str(exc.detail), exc.status_code)

    logger.exception(f"Unhandled error in {view_name}: {exc}")
    return error_response(InternalError.default_message, status.HTTP_500_INTERNAL_SERVER_ERROR)
