class ServiceError(Exception):
    """Failure carrying the wire code and HTTP status the API reports."""

    code = "SERVER_ERROR"
    status_code = 500

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message

    def to_payload(self) -> dict[str, str]:
        return {"id": self.code, "message": self.message}


class ValidationFailed(ServiceError, ValueError):
    code = "VALIDATION_ERROR"
    status_code = 400


class NotFound(ServiceError, LookupError):
    code = "NOT_FOUND"
    status_code = 404


class ServerError(ServiceError):
    code = "SERVER_ERROR"
    status_code = 500
