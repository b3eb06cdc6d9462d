"""Error taxonomy shared by services and routes.

Each error is an ``HTTPException`` with a fixed status code, so a service can
raise it and FastAPI renders it as ``{"detail": message}`` without extra
translation in the route.
"""

from fastapi import HTTPException, status


class AppError(HTTPException):
    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
    default_detail = 'Internal server error.'

    def __init__(self, detail: str | None = None) -> None:
        super().__init__(status_code=self.status_code, detail=detail or self.default_detail)


class UnauthorizedError(AppError):
    status_code = status.HTTP_401_UNAUTHORIZED
    default_detail = 'Not authenticated.'

    def __init__(self, detail: str | None = None) -> None:
        super().__init__(detail)
        self.headers = {'WWW-Authenticate': 'Bearer'}


class ForbiddenError(AppError):
    status_code = status.HTTP_403_FORBIDDEN
    default_detail = 'You do not have permission to perform this action.'


class NotFoundError(AppError):
    status_code = status.HTTP_404_NOT_FOUND
    default_detail = 'Not found.'


class ValidationError(AppError):
    status_code = status.HTTP_400_BAD_REQUEST
    default_detail = 'Missing required fields.'


class ConflictError(AppError):
    status_code = status.HTTP_409_CONFLICT
    default_detail = 'The resource was modified by another request. Reload and try again.'


class UpstreamError(AppError):
    status_code = status.HTTP_503_SERVICE_UNAVAILABLE
    default_detail = 'Database unavailable. Verify DATABASE_URL and Postgres credentials.'


class PaymentUpstreamError(UpstreamError):
    status_code = status.HTTP_502_BAD_GATEWAY
    default_detail = 'Payment processor request failed.'


class EmailUpstreamError(UpstreamError):
    status_code = status.HTTP_502_BAD_GATEWAY
    default_detail = 'Email delivery failed.'
