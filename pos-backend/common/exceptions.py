# common/exceptions.py
"""
Error taxonomy shared by the client and loyalty apps.

ValidationError       -> 400, a field or business rule failed; nothing was written.
NotFoundError         -> 404, the referenced client/document does not exist.
OperationFailedError  -> 409, the database rejected the operation; nothing was written.

`api_exception_handler` is wired as DRF's EXCEPTION_HANDLER. It keeps DRF's
payload and adds a flat ``message`` string, which is what the POS frontend
shows in its toast notifications.
"""
import logging

from rest_framework import exceptions, status
from rest_framework.views import exception_handler

logger = logging.getLogger(__name__)


class ValidationError(exceptions.ValidationError):
    pass


class NotFoundError(exceptions.NotFound):
    default_detail = "Resource not found."


class OperationFailedError(exceptions.APIException):
    status_code = status.HTTP_409_CONFLICT
    default_detail = "The operation could not be completed. No changes were applied."
    default_code = "operation_failed"


def first_error_message(detail) -> str:
    if isinstance(detail, dict):
        for key, value in detail.items():
            msg = first_error_message(value)
            if not msg:
                continue
            if key in ("detail", "non_field_errors", "message"):
                return msg
            return f"{key}: {msg}"
        return ""
    if isinstance(detail, (list, tuple)):
        for item in detail:
            msg = first_error_message(item)
            if msg:
                return msg
        return ""
    return "" if detail is None else str(detail)


def api_exception_handler(exc, context):
    response = exception_handler(exc, context)
    if response is None:
        # not an API exception: let Django turn it into a 500 (logged by django.request)
        return None

    message = first_error_message(response.data)
    view = context.get("view")
    view_name = view.__class__.__name__ if view is not None else "-"

    if isinstance(exc, OperationFailedError) or response.status_code >= 500:
        logger.error("%s failed (%s): %s", view_name, response.status_code, message)
    elif response.status_code in (status.HTTP_400_BAD_REQUEST, status.HTTP_404_NOT_FOUND):
        logger.info("%s rejected (%s): %s", view_name, response.status_code, message)

    if isinstance(response.data, dict):
        response.data.setdefault("message", message)
    else:
        response.data = {"detail": response.data, "message": message}
    return response
