"""Application errors rendered by the Flask error handler as ``{'error': message}``."""


class ServiceError(Exception):
    status_code = 500

    def __init__(self, message: str, status_code: int = None):
        super().__init__(message)
        self.message = message
        if status_code is not None:
            self.status_code = status_code


class BadRequestError(ServiceError):
    status_code = 400


class NotFoundError(ServiceError):
    status_code = 404


class RouterOperationError(ServiceError):
    """A write against a router failed before anything was persisted."""
    status_code = 502
