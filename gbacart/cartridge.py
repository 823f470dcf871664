"""Game pak: ROM image, save memory and GPIO, plus a builder that assembles them."""

from __future__ import annotations

import copy
import logging
import os
from enum import Enum, auto
from pathlib import Path
from typing import Dict, Optional, Union

from .backup import BackupFile, BackupType
from .eeprom import EepromController
from .errors import CartridgeLoadError
from .flash import Flash, FlashSize
from .gpio import GPIO_PORT_CONTROL, GPIO_PORT_DATA, GPIO_PORT_DIRECTION, Gpio
from .header import CartridgeHeader, parse
from .loader import load_from_bytes, load_from_file
from .rtc import Rtc

logger = logging.getLogger(__name__)

PathLike = Union[str, os.PathLike]
BackupMedia = Union[BackupFile, Flash, EepromController, None]
SymbolTable = Dict[str, int]

SRAM_LO = 0x0E00_0000
SRAM_HI = 0x0F00_0000
GAMEPAK_WS2_HI = 0x0D00_0000
EEPROM_BASE_ADDR = 0x0DFF_FF00

BACKUP_FILE_EXT = ".sav"
SRAM_SIZE = 0x8000
_LARGE_ROM = 16 * 1024 * 1024

_ID_STRINGS = (
    (b"EEPROM", BackupType.EEPROM),
    (b"SRAM", BackupType.SRAM),
    (b"FLASH_", BackupType.FLASH),
    (b"FLASH512_", BackupType.FLASH512),
    (b"FLASH1M_", BackupType.FLASH1M),
)


def _is_gpio_access(addr: int) -> bool:
    return addr & 0x1FF_FFFF in (GPIO_PORT_DATA, GPIO_PORT_DIRECTION, GPIO_PORT_CONTROL)


class Cartridge:
    """A loaded game pak. ``backup`` is None while the save type is undetected."""

    def __init__(
        self,
        header: CartridgeHeader,
        data: bytes = b"",
        gpio: Optional[Gpio] = None,
        backup: BackupMedia = None,
        symbols: Optional[SymbolTable] = None,
    ) -> None:
        self.header = header
        self.bytes = bytes(data)
        self.size = len(self.bytes)
        self.gpio = gpio
        self.backup = backup
        self.symbols = symbols

    def set_rom_bytes(self, data: bytes) -> None:
        self.bytes = bytes(data)
        self.size = len(self.bytes)

    def thin_copy(self) -> "Cartridge":
        """Copy the cartridge without its ROM contents."""
        return Cartridge(
            header=self.header,
            data=b"",
            gpio=copy.deepcopy(self.gpio),
            backup=copy.deepcopy(self.backup),
            symbols=copy.deepcopy(self.symbols),
        )

    def update_from(self, other: "Cartridge") -> None:
        """Take over everything but the ROM contents from ``other``."""
        self.header = other.header
        self.gpio = other.gpio
        self.symbols = other.symbols
        self.backup = other.backup

    def read_unused(self, addr: int) -> int:
        """Open-bus value of the ROM area: incrementing halfwords (addr/2 & 0xFFFF)."""
        x = (addr // 2) & 0xFFFF
        return (x >> 8) & 0xFF if addr & 1 else x & 0xFF

    def _read_rom(self, addr: int) -> int:
        offset = addr & 0x01FF_FFFF
        if offset >= self.size:
            return self.read_unused(addr)
        return self.bytes[offset]

    def _is_eeprom_access(self, addr: int) -> bool:
        return addr & 0xFF00_0000 == GAMEPAK_WS2_HI and (
            len(self.bytes) <= _LARGE_ROM or addr >= EEPROM_BASE_ADDR
        )

    def read_8(self, addr: int) -> int:
        if addr & 0xFF00_0000 in (SRAM_LO, SRAM_HI):
            if isinstance(self.backup, BackupFile):
                return self.backup.read(addr & 0x7FFF)
            if isinstance(self.backup, Flash):
                return self.backup.read(addr)
            return 0
        return self._read_rom(addr)

    def read_16(self, addr: int) -> int:
        if _is_gpio_access(addr) and self.gpio is not None:
            if not self.gpio.is_readable():
                logger.warning("trying to read GPIO when reads are not allowed")
            return self.gpio.read(addr & 0x1FF_FFFF)
        if self._is_eeprom_access(addr) and isinstance(self.backup, EepromController):
            return self.backup.read_half(addr)
        return self.read_8(addr) | self.read_8(addr + 1) << 8

    def write_8(self, addr: int, value: int) -> None:
        if addr & 0xFF00_0000 in (SRAM_LO, SRAM_HI):
            if isinstance(self.backup, Flash):
                self.backup.write(addr, value & 0xFF)
            elif isinstance(self.backup, BackupFile):
                self.backup.write(addr & 0x7FFF, value & 0xFF)

    def write_16(self, addr: int, value: int) -> None:
        if _is_gpio_access(addr) and self.gpio is not None:
            self.gpio.write(addr & 0x1FF_FFFF, value)
            return
        if self._is_eeprom_access(addr) and isinstance(self.backup, EepromController):
            self.backup.write_half(addr, value)
            return
        self.write_8(addr, value & 0xFF)
        self.write_8(addr + 1, (value >> 8) & 0xFF)

    def debug_read_8(self, addr: int) -> int:
        return self._read_rom(addr)

    def __repr__(self) -> str:
        return (
            f"Cartridge(header={self.header!r}, size={self.size:#x}, "
            f"gpio={self.gpio!r}, backup={self.backup!r})"
        )


class GpioDeviceType(Enum):
    RTC = auto()
    SOLAR_SENSOR = auto()
    GYRO = auto()
    NONE = auto()


def create_backup(backup_type: BackupType, rom_path: Optional[PathLike]) -> BackupMedia:
    """Create the save memory for ``backup_type``, stored next to ``rom_path`` if given."""
    backup_path = Path(rom_path).with_suffix(BACKUP_FILE_EXT) if rom_path is not None else None
    if backup_type in (BackupType.FLASH, BackupType.FLASH512):
        return Flash(backup_path, FlashSize.FLASH64K)
    if backup_type is BackupType.FLASH1M:
        return Flash(backup_path, FlashSize.FLASH128K)
    if backup_type is BackupType.SRAM:
        return BackupFile(SRAM_SIZE, backup_path)
    if backup_type is BackupType.EEPROM:
        return EepromController(backup_path)
    return None


def detect_backup_type(data: bytes) -> Optional[BackupType]:
    """Guess the save type from the library id strings embedded in the ROM."""
    for needle, backup_type in _ID_STRINGS:
        if needle in data:
            return backup_type
    return None


class GamepakBuilder:
    """Fluent builder for a :class:`Cartridge`."""

    def __init__(self) -> None:
        self._path: Optional[Path] = None
        self._bytes: Optional[bytes] = None
        self._save_path: Optional[Path] = None
        self._save_type = BackupType.AUTODETECT
        self._gpio_device = GpioDeviceType.NONE
        self._create_backup_file = True

    def buffer(self, data: bytes) -> "GamepakBuilder":
        self._bytes = bytes(data)
        return self

    def file(self, path: PathLike) -> "GamepakBuilder":
        self._path = Path(path)
        return self

    def save_path(self, path: PathLike) -> "GamepakBuilder":
        self._save_path = Path(path)
        return self

    def save_type(self, save_type: BackupType) -> "GamepakBuilder":
        self._save_type = save_type
        return self

    def with_sram(self) -> "GamepakBuilder":
        self._save_type = BackupType.SRAM
        return self

    def with_flash128k(self) -> "GamepakBuilder":
        self._save_type = BackupType.FLASH1M
        return self

    def with_flash64k(self) -> "GamepakBuilder":
        self._save_type = BackupType.FLASH512
        return self

    def with_eeprom(self) -> "GamepakBuilder":
        self._save_type = BackupType.EEPROM
        return self

    def without_backup_to_file(self) -> "GamepakBuilder":
        self._create_backup_file = False
        return self

    def with_rtc(self) -> "GamepakBuilder":
        self._gpio_device = GpioDeviceType.RTC
        return self

    def build(self) -> Cartridge:
        if self._bytes is not None:
            data = load_from_bytes(self._bytes)
        elif self._path is not None:
            data = load_from_file(self._path)
        else:
            raise CartridgeLoadError("either provide file() or buffer()")

        header = parse(data)
        logger.info("Loaded ROM: %r", header)

        save_path = self._save_path
        if not self._create_backup_file:
            save_path = None
        elif save_path is None:
            if self._path is not None:
                save_path = self._path.with_suffix(BACKUP_FILE_EXT)
            else:
                logger.warning("can't create save file as no save path was provided")

        save_type = self._save_type
        if save_type is BackupType.AUTODETECT:
            detected = detect_backup_type(data)
            if detected is not None:
                logger.info("Detected Backup: %s", detected.name)
                save_type = detected
            else:
                logger.warning("could not detect backup save type")

        backup = create_backup(save_type, save_path)

        if self._gpio_device is GpioDeviceType.NONE:
            gpio = None
        elif self._gpio_device is GpioDeviceType.RTC:
            logger.info("Emulating RTC!")
            gpio = Gpio(Rtc())
        else:
            raise NotImplementedError(
                f"Gpio device {self._gpio_device.name} not implemented"
            )

        return Cartridge(header=header, data=data, gpio=gpio, backup=backup, symbols=None)