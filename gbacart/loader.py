"""Loading ROM images from raw bytes, files and zip archives."""

from __future__ import annotations

import io
import logging
import os
import zipfile
from pathlib import Path
from typing import Union

from .errors import CartridgeLoadError

logger = logging.getLogger(__name__)

PathLike = Union[str, os.PathLike]


def try_load_zip(data: bytes) -> bytes:
    """Return the first ``.gba`` member of a zip archive."""
    try:
        with zipfile.ZipFile(io.BytesIO(data)) as archive:
            for info in archive.infolist():
                if info.filename.endswith(".gba"):
                    return archive.read(info)
    except (zipfile.BadZipFile, zipfile.LargeZipFile, OSError) as exc:
        raise CartridgeLoadError(f"zip error: {exc}") from exc
    raise CartridgeLoadError("no .gba files found within the zip archive")


def load_from_file(path: PathLike) -> bytes:
    """Read a ROM from a file, unpacking it when the file is a zip archive."""
    path = Path(path)
    data = path.read_bytes()
    suffix = path.suffix
    if suffix == ".zip":
        return try_load_zip(data)
    if suffix and suffix != ".gba":
        logger.warning("unknown file extension, loading as raw binary file")
    return data


def load_from_bytes(data: bytes) -> bytes:
    """Treat ``data`` as a zip archive if possible, else as a raw ROM."""
    try:
        return try_load_zip(data)
    except CartridgeLoadError:
        return bytes(data)