class FileManagerError(Exception):
    """Base error carrying the HTTP status and machine code it maps to."""

    status_code = 500
    code = "error"

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class InvalidRequest(FileManagerError):
    status_code = 400
    code = "bad_request"


class Unauthenticated(FileManagerError):
    status_code = 401
    code = "unauthorized"


class Forbidden(FileManagerError):
    status_code = 403
    code = "forbidden"


class StorageUnavailable(FileManagerError):
    status_code = 500
    code = "storage_unavailable"


class TransferFailed(FileManagerError):
    """A direct PUT/GET against a signed URL did not succeed."""

    status_code = 502
    code = "transfer_failed"

    def __init__(self, message: str, key: str | None = None):
        super().__init__(message)
        self.key = key


ERRORS_BY_CODE = {
    cls.code: cls
    for cls in (InvalidRequest, Unauthenticated, Forbidden, StorageUnavailable, TransferFailed)
}
