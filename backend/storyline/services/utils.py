import base64
from pathlib import PurePosixPath
from typing import Optional
from urllib.parse import urlparse

DATA_URI_PREFIX = "data:"
DEFAULT_STORYLINE_NAME = "Untitled Storyline"


def is_data_uri(value: Optional[str]) -> bool:
    return bool(value) and value.startswith(DATA_URI_PREFIX)


def to_data_uri(data: bytes, content_type: str = "image/png") -> str:
    return f"data:{content_type};base64,{base64.b64encode(data).decode('ascii')}"


def truncate_words(text: str, limit: int) -> str:
    return " ".join(text.split()[:limit])


def derive_storyline_name(file_name: Optional[str], original_video_url: Optional[str]) -> str:
    """Prefer the upload file name; fall back to the stem of the video URL."""
    if file_name and file_name.strip():
        return file_name.strip()
    if original_video_url:
        stem = PurePosixPath(urlparse(original_video_url).path).name.split(".")[0]
        if stem:
            return stem
    return DEFAULT_STORYLINE_NAME


def file_extension(file_name: Optional[str], default: str) -> str:
    suffix = PurePosixPath(file_name or "").suffix.lstrip(".").lower()
    return suffix or default
