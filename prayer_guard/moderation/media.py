from typing import Optional, Sequence
from urllib.parse import urlparse

from .errors import ValidationError
from .schemas import FileValidation


def extension_of(name: str) -> Optional[str]:
    last = name.rsplit("/", 1)[-1]
    if "." not in last:
        return None
    ext = last.rsplit(".", 1)[-1].lower()
    return ext or None


def media_extension(url: str) -> Optional[str]:
    """Extension of the URL path, ignoring query strings and fragments."""
    try:
        path = urlparse(url).path
    except ValueError:
        return None
    return extension_of(path)


def check_media(
    url: str,
    *,
    formats: Sequence[str],
    max_duration: float,
    duration_seconds: Optional[float],
    format_message: str,
    duration_message: str,
) -> None:
    """Raise ``ValidationError`` before any provider call is spent."""
    ext = media_extension(url)
    if ext is None or ext not in formats:
        raise ValidationError(format_message, check="format")
    if duration_seconds is not None and duration_seconds > max_duration:
        raise ValidationError(duration_message, check="duration")


def validate_upload(
    filename: str,
    size_bytes: int,
    *,
    formats: Sequence[str],
    max_size: int,
    format_error: str,
    size_error: str,
) -> FileValidation:
    ext = extension_of(filename)
    if ext is None or ext not in formats:
        return FileValidation(valid=False, error=format_error)
    if size_bytes > max_size:
        return FileValidation(valid=False, error=size_error)
    return FileValidation(valid=True)
