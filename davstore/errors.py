class StorageAdapterError(Exception):
    status_code = 500


class NotFound(StorageAdapterError):
    status_code = 404

    def __init__(self, key: str) -> None:
        super().__init__(f"Resource not found: {key}")
        self.key = key


class BodyUnavailable(StorageAdapterError):
    status_code = 500

    def __init__(self, key: str, detail: str | None = None) -> None:
        message = f"Failed to get body stream for {key}"
        if detail:
            message = f"{message}: {detail}"
        super().__init__(message)
        self.key = key


class BackendError(StorageAdapterError):
    """Any other failure reported by the object store, message kept verbatim."""

    status_code = 502

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message
