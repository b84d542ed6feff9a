"""Error types raised by the embedding engine.

Every error carries a stable ``kind`` (used as the metrics outcome label and
the ``code`` field of error responses) and the HTTP status it maps to, so
nothing downstream has to inspect free-text messages.
"""


class EmbeddingServiceError(Exception):
    """Base class for all service errors."""

    kind = "internal_error"
    status_code = 500
    error_type = "internal_error"

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message

    def to_dict(self) -> dict:
        """Render as an OpenAI-style error body."""
        return {
            "error": {
                "message": self.message,
                "type": self.error_type,
                "code": self.kind,
            }
        }


# Validation (client errors, never retried)

class ValidationError(EmbeddingServiceError):
    """The request payload is malformed."""

    kind = "invalid_request"
    status_code = 400
    error_type = "invalid_request_error"


class EmptyInputError(ValidationError):
    kind = "empty_input"

    def __init__(self, message: str = "Input cannot be empty"):
        super().__init__(message)


class InvalidInputTypeError(ValidationError):
    kind = "invalid_input_type"


class InvalidModelFieldError(ValidationError):
    kind = "invalid_model"


class UnsupportedEncodingFormatError(ValidationError):
    kind = "unsupported_encoding_format"


# Model loading

class LoadError(EmbeddingServiceError):
    """A model could not be made available."""

    kind = "load_error"
    status_code = 503
    error_type = "service_unavailable"

    def __init__(self, model_id: str, message: str):
        super().__init__(message)
        self.model_id = model_id


class UnknownModelError(LoadError):
    """No model definition exists for the identifier. Permanent."""

    kind = "unknown_model"
    status_code = 404
    error_type = "invalid_request_error"

    def __init__(self, model_id: str, available=()):
        message = f"Unknown model: {model_id}"
        if available:
            message += f". Available: {', '.join(sorted(available))}"
        super().__init__(model_id, message)


class LoadFailedError(LoadError):
    """Loading a known model failed; a later request may retry."""

    kind = "load_failed"

    def __init__(self, model_id: str, reason: str):
        super().__init__(model_id, f"Failed to load model {model_id}: {reason}")
        self.reason = reason


# Inference

class InferenceError(EmbeddingServiceError):
    """Generating embeddings failed. No partial output is returned."""

    kind = "inference_error"
    status_code = 500
    error_type = "internal_error"


class BackendFailureError(InferenceError):
    kind = "backend_failure"

    def __init__(self, model_id: str, reason: str):
        super().__init__(f"Failed to generate embeddings with {model_id}: {reason}")
        self.model_id = model_id
        self.reason = reason


class InferenceTimeoutError(InferenceError):
    kind = "timeout"

    def __init__(self, timeout: float):
        super().__init__(f"Request timed out after {timeout:g}s")
        self.timeout = timeout
