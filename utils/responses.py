"""
JSON envelope shared by the API routes: {ok, data, error, message}
"""
from fastapi.responses import JSONResponse

from utils.errors import ServiceError


def _envelope(ok, status, data=None, error=None, message=""):
    return JSONResponse(
        status_code=status,
        content={
            "ok": ok,
            "data": data or {},
            "error": error,
            "message": message,
        }
    )


def success_response(data=None, message="OK", status=200):
    return _envelope(True, status, data=data, message=message)


def error_response(error_code, status=400, message="An error occurred", data=None):
    return _envelope(False, status, data=data, error=error_code, message=message)


def service_error_response(exc: ServiceError):
    """Envelope for an error raised by the service layer."""
    return error_response(exc.error_code, status=exc.status_code, message=exc.message)
