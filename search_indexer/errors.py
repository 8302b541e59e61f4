"""Exceptions raised by the indexing pipeline."""
from typing import Optional


class IndexerError(Exception):
    """Base exception for indexing errors."""
    pass


class ConfigurationError(IndexerError):
    """Invalid settings, job configuration or domain declaration."""
    pass


class StorageNotFoundError(IndexerError, FileNotFoundError):
    """Path absent from the managed store."""
    def __init__(self, path: str, message: Optional[str] = None):
        self.path = path
        self.message = message or f"Path not found: {path}"
        super().__init__(self.message)

    def __str__(self) -> str:
        return self.message


class StorageDecodeError(IndexerError, ValueError):
    """File content is not valid UTF-8."""
    def __init__(self, path: str, reason: str = ""):
        self.path = path
        self.message = f"File is not valid UTF-8: {path}"
        if reason:
            self.message = f"{self.message} ({reason})"
        super().__init__(self.message)


class DatasetReadError(IndexerError):
    """Dataset could not be loaded."""
    pass


class ConnectivityError(IndexerError):
    """Search cluster could not be reached."""
    pass


class TemplateRejectedError(IndexerError):
    """Search cluster refused the index template."""
    def __init__(self, template_name: str, status_code: Optional[int], detail: str = ""):
        self.template_name = template_name
        self.status_code = status_code
        message = f"Template '{template_name}' rejected with status {status_code}"
        if detail:
            message = f"{message}: {detail}"
        super().__init__(message)


class WriteFailureError(IndexerError):
    """Bulk write to the target index failed."""
    pass
