"""Exception taxonomy for request processing.

Every failure the service reports to a caller is a ProcessingError
carrying the HTTP status it maps to. Client errors are raised before
any toolkit call is attempted; toolkit errors wrap the message of the
underlying GDAL failure so it can be returned for diagnosis.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import Iterable


class ProcessingError(Exception):
    """Base class for errors that end a request."""

    status_code: int = 500

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class ClientError(ProcessingError):
    """Malformed or incomplete request."""

    status_code = 400


class UnknownOperationError(ClientError):
    def __init__(self, operation: str | None) -> None:
        if operation:
            message = f"Unknown operation: {operation}"
        else:
            message = "Missing operation"
        super().__init__(message)
        self.operation = operation


class MissingParameterError(ClientError):
    def __init__(self, parameter: str, operation: str) -> None:
        super().__init__(f"{parameter} is required for {operation}")
        self.parameter = parameter


class UnsupportedFormatError(ClientError):
    def __init__(self, output_format: str) -> None:
        super().__init__(f"Unsupported format: {output_format}")
        self.output_format = output_format


class LayerNotFoundError(ClientError):
    """Requested layer is absent; the message lists what is available."""

    def __init__(self, layer_name: str, available: Iterable[str]) -> None:
        self.layer_name = layer_name
        self.available = list(available)
        names = ", ".join(self.available) or "none"
        super().__init__(
            f"Layer '{layer_name}' not found. Available layers: {names}"
        )


class UploadTooLargeError(ProcessingError):
    status_code = 413

    def __init__(self, max_size: int) -> None:
        super().__init__(f"Upload too large (max {max_size} bytes)")
        self.max_size = max_size


class ToolkitError(ProcessingError):
    """GDAL could not open, read, transform or write a dataset."""

    status_code = 500


class UnsupportedDatasetError(ToolkitError):
    """No dataset the toolkit recognises could be located in an upload."""
