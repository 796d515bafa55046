from typing import Any

from periksakata.errors import InvalidRequest
from periksakata.models import API_VERSION, CheckRequest


def validate_request(payload: Any, max_text_length: int) -> CheckRequest:
    """Check the inbound body before any expensive work happens.

    Only ``version`` and ``text`` are read; other caller metadata such as
    ``source`` or ``options`` is ignored.
    """
    if not payload or not isinstance(payload, dict):
        raise InvalidRequest("Request body is required")

    text = payload.get("text")
    if not isinstance(text, str):
        raise InvalidRequest("Text field is required and must be a string")
    if not text:
        raise InvalidRequest("Text cannot be empty")
    if len(text) > max_text_length:
        raise InvalidRequest(f"Text too long. Maximum {max_text_length} characters allowed")

    version = payload.get("version")
    if version is not None and version != API_VERSION:
        raise InvalidRequest("Unsupported API version")

    return CheckRequest(version=API_VERSION, text=text)
