"""Save-memory types and the file-backed byte store behind them."""

from __future__ import annotations

import os
from enum import IntEnum
from pathlib import Path
from typing import BinaryIO, Optional, Union

PathLike = Union[str, os.PathLike]

_ERASED = 0xFF


class BackupType(IntEnum):
    """Kinds of save memory a cartridge may carry."""

    EEPROM = 0
    SRAM = 1
    FLASH = 2
    FLASH512 = 3
    FLASH1M = 4
    AUTODETECT = 5

    @classmethod
    def parse(cls, s: str) -> "BackupType":
        """Parse a save type name as given on a command line."""
        try:
            return _BACKUP_TYPE_NAMES[s]
        except KeyError:
            raise ValueError(f"{s} is not a valid save type") from None


_BACKUP_TYPE_NAMES = {
    "autodetect": BackupType.AUTODETECT,
    "sram": BackupType.SRAM,
    "flash128k": BackupType.FLASH1M,
    "flash64k": BackupType.FLASH512,
    "eeprom": BackupType.EEPROM,
}


def _fit(content: bytes, size: int) -> bytearray:
    """Truncate or pad ``content`` with erased bytes to exactly ``size``."""
    result = bytearray(content[:size])
    result.extend(bytes([_ERASED]) * (size - len(result)))
    return result


class BackupFile:
    """A byte buffer of save memory, mirrored to a file when a path is given."""

    def __init__(self, size: int, path: Optional[PathLike] = None) -> None:
        self.size = size
        self.path: Optional[Path] = Path(path) if path is not None else None
        self._file: Optional[BinaryIO] = None
        if self.path is None:
            self.data = bytearray(bytes([_ERASED]) * size)
            return
        if not self.path.is_file():
            self.path.write_bytes(bytes([_ERASED]) * size)
        self._file = open(self.path, "r+b")
        self.data = _fit(self._file.read(), size)

    def read(self, offset: int) -> int:
        """Return the byte at ``offset``."""
        return self.data[offset]

    def write(self, offset: int, value: int) -> None:
        """Store ``value`` at ``offset`` and mirror it to the file."""
        self.data[offset] = value
        if self._file is not None:
            self._file.seek(offset)
            self._file.write(bytes([value]))
            self._file.flush()

    def resize(self, new_size: int) -> None:
        """Change the size, padding with erased bytes, and write everything out."""
        self.size = new_size
        self.data = _fit(self.data, new_size)
        self.flush()

    def flush(self) -> None:
        """Write the whole buffer to the start of the file, if there is one."""
        if self._file is not None:
            self._file.seek(0)
            self._file.write(self.data)
            self._file.flush()

    def close(self) -> None:
        """Close the underlying file; the in-memory buffer stays usable."""
        if self._file is not None:
            self._file.close()
            self._file = None

    def __enter__(self) -> "BackupFile":
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()

    def __getstate__(self) -> dict:
        return {"size": self.size, "path": self.path}

    def __setstate__(self, state: dict) -> None:
        self.__init__(state["size"], state["path"])

    def __repr__(self) -> str:
        return f"BackupFile(size={self.size:#x}, path={self.path!r})"