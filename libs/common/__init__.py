"""Common utilities and exceptions."""

from libs.common.exceptions import PlatformError
from libs.common.file_utils import (
    atomic_write_json,
    atomic_write_text,
    hash_file_sha256,
    hash_text_sha256,
)

__all__ = [
    "PlatformError",
    "atomic_write_json",
    "atomic_write_text",
    "hash_file_sha256",
    "hash_text_sha256",
]
