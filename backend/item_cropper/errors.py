"""Exceptions raised across the cropping workflow."""

from typing import Optional


class CropperError(Exception):
    """Base exception for item cropper errors."""

    def __init__(
        self,
        message: str,
        component: Optional[str] = None,
        original_error: Optional[Exception] = None
    ):
        self.message = message
        self.component = component
        self.original_error = original_error
        super().__init__(self._format_message())

    def _format_message(self) -> str:
        msg = self.message
        if self.component:
            msg += f" (component: {self.component})"
        if self.original_error:
            msg += f" [{type(self.original_error).__name__}: {self.original_error}]"
        return msg


class ValidationFailure(CropperError):
    """Request payload is missing or malformed; nothing was processed."""
    pass


class DetectionFailure(CropperError):
    """Recognizer or preprocessing fault during item-number detection."""
    pass


class ExtractionFailure(CropperError):
    """A single box could not be cropped or persisted."""

    def __init__(self, message: str, box=None, original_error: Optional[Exception] = None):
        self.box = box
        super().__init__(message, component="extraction", original_error=original_error)


class SessionLimitError(CropperError):
    """Workspace already holds the maximum number of images."""
    pass


class LastBoxError(CropperError):
    """A session must always keep at least one box."""
    pass
