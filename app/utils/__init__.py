from app.utils.auth import extract_bearer_token, resolve_user
from app.utils.sanitizer import sanitize_email, sanitize_filename, sanitize_string

__all__ = [
    "extract_bearer_token",
    "resolve_user",
    "sanitize_email",
    "sanitize_filename",
    "sanitize_string",
]
