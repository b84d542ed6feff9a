"""Request validation and normalization.

Turns the raw JSON body of ``POST /v1/embeddings`` into an
``EmbeddingRequest``: a single string becomes a one-element sequence, the
model falls back to the process default, and malformed payloads raise a
``ValidationError`` subclass. Pure; no I/O, no logging.
"""

from dataclasses import dataclass
from typing import Any, Mapping, Tuple

from ..errors import (
    EmptyInputError,
    InvalidInputTypeError,
    InvalidModelFieldError,
    UnsupportedEncodingFormatError,
)

SUPPORTED_ENCODING_FORMATS = ("float",)


@dataclass(frozen=True)
class EmbeddingRequest:
    """A validated embedding request. ``inputs`` is never empty."""

    inputs: Tuple[str, ...]
    model: str
    encoding_format: str = "float"


def _type_name(value: Any) -> str:
    if value is None:
        return "null"
    if isinstance(value, bool):
        return "boolean"
    if isinstance(value, (int, float)):
        return "number"
    if isinstance(value, Mapping):
        return "object"
    if isinstance(value, (list, tuple)):
        return "array"
    return type(value).__name__


def normalize_input(value: Any) -> Tuple[str, ...]:
    """Normalize the ``input`` field to a non-empty tuple of strings."""
    if isinstance(value, str):
        return (value,)

    if isinstance(value, (list, tuple)):
        if not value:
            raise EmptyInputError()
        for index, item in enumerate(value):
            if not isinstance(item, str):
                raise InvalidInputTypeError(
                    f"Input at index {index} must be a string, got {_type_name(item)}"
                )
        return tuple(value)

    raise InvalidInputTypeError(
        f"Input must be a string or an array of strings, got {_type_name(value)}"
    )


def normalize(raw: Mapping[str, Any], default_model: str) -> EmbeddingRequest:
    """Validate ``raw`` and build an ``EmbeddingRequest``.

    Parameters
    - raw: Decoded request body
    - default_model: Identifier substituted when ``model`` is absent or null
    """
    if not isinstance(raw, Mapping):
        raise InvalidInputTypeError(f"Request body must be an object, got {_type_name(raw)}")

    if "input" not in raw:
        raise InvalidInputTypeError("Missing required field: input")
    inputs = normalize_input(raw["input"])

    model = raw.get("model")
    if model is None:
        model = default_model
    elif not isinstance(model, str) or not model.strip():
        raise InvalidModelFieldError("Model must be a non-empty string")

    encoding_format = raw.get("encoding_format")
    if encoding_format is None:
        encoding_format = "float"
    elif encoding_format not in SUPPORTED_ENCODING_FORMATS:
        raise UnsupportedEncodingFormatError(
            f"Unsupported encoding_format: {encoding_format!r}; supported: float"
        )

    return EmbeddingRequest(inputs=inputs, model=model, encoding_format=encoding_format)
