"""Macronix-style flash save chip driven by byte writes to the SRAM region."""

from __future__ import annotations

import logging
import os
from enum import Enum, IntEnum, auto
from typing import Optional, Union

from .backup import BackupFile

logger = logging.getLogger(__name__)

PathLike = Union[str, os.PathLike]

COMMAND_ADDR = 0x0E00_5555
MAGIC_ADDR = 0x0E00_2AAA
BANK_SELECT_ADDR = 0x0E00_0000

SECTOR_SIZE = 0x1000
BANK_SIZE = 0x10000

_ERASED = 0xFF


class FlashSize(Enum):
    """Flash capacities, each with its size in bytes and its chip id."""

    FLASH64K = (64 * 1024, 0x1CC2)
    FLASH128K = (128 * 1024, 0x09C2)

    @property
    def size(self) -> int:
        return self.value[0]

    @property
    def chip_id(self) -> int:
        return self.value[1]


class FlashCommand(IntEnum):
    ENTER_ID_MODE = 0x90
    TERMINATE_ID_MODE = 0xF0
    ERASE = 0x80
    ERASE_ENTIRE_CHIP = 0x10
    ERASE_SECTOR = 0x30
    WRITE_BYTE = 0xA0
    SELECT_BANK = 0xB0


class FlashWriteSequence(Enum):
    INITIAL = auto()
    MAGIC = auto()
    COMMAND = auto()
    ARGUMENT = auto()


class FlashMode(Enum):
    INITIAL = auto()
    CHIP_ID = auto()
    ERASE = auto()
    WRITE = auto()
    SELECT = auto()


class Flash:
    """Flash save memory; commands arrive as a magic write sequence."""

    def __init__(
        self, path: Optional[PathLike] = None, flash_size: FlashSize = FlashSize.FLASH64K
    ) -> None:
        self.chip_id = flash_size.chip_id
        self.size = flash_size.size
        self.wrseq = FlashWriteSequence.INITIAL
        self.mode = FlashMode.INITIAL
        self.bank = 0
        self.memory = BackupFile(self.size, path)

    def _reset_sequence(self) -> None:
        self.wrseq = FlashWriteSequence.INITIAL

    def _flash_offset(self, offset: int) -> int:
        """Physical offset inside the flash memory for the selected bank."""
        return self.bank * BANK_SIZE + (offset & 0xFFFF)

    def _erase(self, start: int, length: int) -> None:
        end = start + length
        if end > len(self.memory.data):
            raise IndexError(f"flash erase range {start:#x}..{end:#x} out of bounds")
        self.memory.data[start:end] = bytes([_ERASED]) * length
        self.memory.flush()

    def _command(self, addr: int, value: int) -> None:
        try:
            command = FlashCommand(value)
        except ValueError:
            raise ValueError(f"[FLASH] unknown command {value:x}") from None

        if command is FlashCommand.ERASE_SECTOR:
            self._erase(self._flash_offset(addr & 0xF000), SECTOR_SIZE)
            self._reset_sequence()
            self.mode = FlashMode.INITIAL
            return

        if addr != COMMAND_ADDR:
            raise ValueError(f"[FLASH] Invalid command {command.name} addr {addr:#x}")

        if command is FlashCommand.ENTER_ID_MODE:
            self.mode = FlashMode.CHIP_ID
            self._reset_sequence()
        elif command is FlashCommand.TERMINATE_ID_MODE:
            self.mode = FlashMode.INITIAL
            self._reset_sequence()
        elif command is FlashCommand.ERASE:
            self.mode = FlashMode.ERASE
            self._reset_sequence()
        elif command is FlashCommand.ERASE_ENTIRE_CHIP:
            if self.mode is FlashMode.ERASE:
                self._erase(0, self.size)
            self._reset_sequence()
            self.mode = FlashMode.INITIAL
        elif command is FlashCommand.WRITE_BYTE:
            self.mode = FlashMode.WRITE
            self.wrseq = FlashWriteSequence.ARGUMENT
        elif command is FlashCommand.SELECT_BANK:
            self.mode = FlashMode.SELECT
            self.wrseq = FlashWriteSequence.ARGUMENT

    def read(self, addr: int) -> int:
        """Read a byte, or the chip id while in id mode."""
        offset = addr & 0xFFFF
        if self.mode is FlashMode.CHIP_ID:
            if offset == 0:
                return self.chip_id & 0xFF
            if offset == 1:
                return self.chip_id >> 8
            raise ValueError("Tried to read invalid flash offset while reading chip ID")
        return self.memory.read(self._flash_offset(offset))

    def write(self, addr: int, value: int) -> None:
        """Feed one byte write into the command sequence."""
        logger.debug("[FLASH] write %#x=%#x", addr, value)
        seq = self.wrseq
        if seq is FlashWriteSequence.INITIAL:
            if addr == COMMAND_ADDR and value == 0xAA:
                self.wrseq = FlashWriteSequence.MAGIC
        elif seq is FlashWriteSequence.MAGIC:
            if addr == MAGIC_ADDR and value == 0x55:
                self.wrseq = FlashWriteSequence.COMMAND
        elif seq is FlashWriteSequence.COMMAND:
            self._command(addr, value)
        else:
            if self.mode is FlashMode.WRITE:
                self.memory.write(self._flash_offset(addr & 0xFFFF), value)
            elif self.mode is FlashMode.SELECT:
                if addr == BANK_SELECT_ADDR:
                    self.bank = value
            else:
                raise RuntimeError("Flash sequence is invalid")
            self.mode = FlashMode.INITIAL
            self._reset_sequence()

    def __repr__(self) -> str:
        return f"Flash(chip_id={self.chip_id:#06x}, size={self.size:#x}, bank={self.bank})"