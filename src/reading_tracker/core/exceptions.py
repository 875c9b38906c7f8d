"""Custom exception types shared across the reading tracker package."""


class CaptureError(RuntimeError):
    """Base class for microphone/recognizer failures surfaced as observable messages."""

    user_message = "Audio capture failed."

    def __init__(self, detail: str | None = None, *, user_message: str | None = None):
        super().__init__(detail or user_message or self.user_message)
        if user_message:
            self.user_message = user_message


class PermissionDeniedError(CaptureError):
    """Raised when speech or microphone authorization is missing."""

    user_message = "Speech recognition and microphone access are required."


class RecognizerUnavailableError(CaptureError):
    """Raised when the speech recognizer cannot serve requests right now."""

    user_message = "Speech recognition is temporarily unavailable. Please try again later."


class AudioSessionConfigError(CaptureError):
    """Raised when the audio session (input device) cannot be configured."""

    user_message = "Audio session configuration failed."


class EngineStartError(CaptureError):
    """Raised when the input engine refuses to start."""

    user_message = "Failed to start audio recording."


class RecognitionTaskError(CaptureError):
    """Raised or reported when a recognition task cannot be created or fails."""

    user_message = "Failed to start speech recognition."


class TapNotInstalledError(RuntimeError):
    """Raised by input engines when removing a tap that is not installed."""


class StorageError(RuntimeError):
    """Raised when the on-disk book/session store cannot be read or written."""
