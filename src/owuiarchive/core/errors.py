"""
Exception types shared across owuiarchive.

Per-entity failures during a restore are not raised; they are collected as
results (see ``owuiarchive.schemas.results``). The exceptions here are the
ones that abort an operation or cross a collaborator boundary.
"""


class OwuiArchiveError(Exception):
    """Base class for all owuiarchive errors."""


class StructuralError(OwuiArchiveError):
    """The container cannot be read, or its manifest is unusable."""


class SelectionError(OwuiArchiveError, ValueError):
    """No resource category was enabled."""

    def __init__(self, message: str = "at least one category required"):
        super().__init__(message)


class APIError(OwuiArchiveError):
    """Error response from the Open WebUI API."""

    def __init__(self, status_code: int, message: str):
        self.status_code = status_code
        self.message = message
        super().__init__(f"API error (status {status_code}): {message}")


class EncryptionError(OwuiArchiveError):
    """Encrypting or decrypting a container failed."""


class ContainerExistsError(OwuiArchiveError):
    """Refusing to overwrite an existing container."""

    def __init__(self, path):
        self.path = path
        super().__init__(f"backup file already exists: {path}")
