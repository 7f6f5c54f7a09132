"""File storage helpers for uploaded papers."""

import re
import secrets
import time
from pathlib import Path
from typing import Iterable, Optional

from fastapi import UploadFile

from exam_eval.exceptions import ValidationError

ALLOWED_PAPER_EXTENSIONS = (".pdf", ".jpg", ".jpeg", ".png", ".tiff")

_UNSAFE_CHARS = re.compile(r"[^a-zA-Z0-9]")

CHUNK_SIZE = 1024 * 1024


def ensure_directory(path: Path) -> None:
    """Create ``path`` (and parents) if missing."""

    path.mkdir(parents=True, exist_ok=True)


def file_extension(filename: str) -> str:
    return Path(filename or "").suffix.lower()


def has_allowed_extension(filename: str, allowed: Iterable[str] = ALLOWED_PAPER_EXTENSIONS) -> bool:
    return file_extension(filename) in set(allowed)


def generate_file_name(original_name: str, prefix: Optional[str] = None) -> str:
    """``<prefix>_<sanitized base>_<epoch ms>_<16 hex><ext>``.

    Only the base name of ``original_name`` is used and every non-alphanumeric
    character is replaced, so the result can never escape the upload directory.
    """

    name = Path(original_name or "").name
    extension = file_extension(name)
    base = name[: -len(extension)] if extension else name
    sanitized = _UNSAFE_CHARS.sub("_", base) or "file"
    timestamp = int(time.time() * 1000)
    random_part = secrets.token_hex(8)
    head = f"{prefix}_" if prefix else ""
    return f"{head}{sanitized}_{timestamp}_{random_part}{extension}"


async def save_upload_file(
    upload: UploadFile,
    destination: Path,
    overwrite: bool = False,
    max_bytes: Optional[int] = None,
) -> int:
    """Save an uploaded file to ``destination`` and return its size in bytes.

    The body is copied in ``CHUNK_SIZE`` reads; going over ``max_bytes``
    stops the copy and removes the partial file.
    """

    ensure_directory(destination.parent)
    if destination.exists() and not overwrite:
        raise FileExistsError(f"{destination} already exists and overwrite is False")

    size = 0
    with destination.open("wb") as f:
        while True:
            chunk = await upload.read(CHUNK_SIZE)
            if not chunk:
                break
            size += len(chunk)
            if max_bytes is not None and size > max_bytes:
                break
            f.write(chunk)
    if max_bytes is not None and size > max_bytes:
        destination.unlink(missing_ok=True)
        raise ValidationError(
            f"File {upload.filename} exceeds the {max_bytes} byte upload limit"
        )
    await upload.seek(0)
    return size
