import hashlib


def text_fingerprint(text: str) -> str:
    """First 16 hex chars of the SHA-256 of the UTF-8 text."""
    return hashlib.sha256(text.encode("utf-8")).hexdigest()[:16]
