"""Model lifecycle and inference exceptions."""


class LLMServiceError(Exception):
    """Base error for the local LLM service."""
    pass


class UnknownModelError(LLMServiceError):
    """Model id is not in the catalog."""

    def __init__(self, model_id: str):
        super().__init__(f"Unknown model: {model_id}")
        self.model_id = model_id


class DownloadError(LLMServiceError):
    """Model artifact could not be fetched."""

    reason = "download"


class NetworkError(DownloadError):
    """Transport failure while talking to the model host."""

    reason = "network"


class HttpStatusError(DownloadError):
    """Model host answered with a non-200, non-redirect status."""

    reason = "http_status"

    def __init__(self, status_code: int, url: str):
        super().__init__(f"Download failed: HTTP {status_code}")
        self.status_code = status_code
        self.url = url


class RedirectLimitError(DownloadError):
    """Redirect chain exceeded the configured hop limit."""

    reason = "redirect_limit"


class IntegrityError(DownloadError):
    """Artifact on disk is truncated or otherwise fails validation."""

    reason = "integrity"


class AlreadyLoadingError(LLMServiceError):
    """A download or load sequence is already in flight."""

    def __init__(self, message: str = "Model is already loading"):
        super().__init__(message)


class ModelNotLoadedError(LLMServiceError):
    """Inference requested while no model is ready."""

    def __init__(self, message: str = "Model not loaded. Load a model first."):
        super().__init__(message)


class EngineError(LLMServiceError):
    """Failure reported by the native inference engine."""
    pass


class ParseError(LLMServiceError):
    """Structured output could not be extracted from a model response."""
    pass
