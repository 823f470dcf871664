"""Serial EEPROM save chip driven bit by bit over 16-bit bus accesses."""

from __future__ import annotations

import logging
import os
from enum import Enum, IntEnum, auto
from pathlib import Path
from typing import Optional, Union

from .backup import BackupFile

logger = logging.getLogger(__name__)

PathLike = Union[str, os.PathLike]

_MASK64 = (1 << 64) - 1
_EEPROM_REGION = range(0x0D00_0000, 0x0E00_0000)


class EepromType(Enum):
    """EEPROM capacities, each with its size in bytes and address width in bits."""

    EEPROM512 = (0x0200, 6)
    EEPROM8K = (0x2000, 14)

    @property
    def size(self) -> int:
        return self.value[0]

    @property
    def address_bits(self) -> int:
        return self.value[1]


class SpiInstruction(IntEnum):
    READ = 0b11
    WRITE = 0b10


class SpiState(Enum):
    RX_INSTRUCTION = auto()
    RX_ADDRESS = auto()
    STOP_BIT = auto()
    TX_DUMMY = auto()
    TX_DATA = auto()
    RX_DATA = auto()


class EepromChip:
    """State machine of the EEPROM chip; ``instruction`` qualifies the address and stop-bit states."""

    def __init__(self, eeprom_type: EepromType, memory: BackupFile) -> None:
        memory.resize(eeprom_type.size)
        self.memory = memory
        self.addr_bits = eeprom_type.address_bits
        self.state = SpiState.RX_INSTRUCTION
        self.instruction = SpiInstruction.READ
        self.rx_count = 0
        self.rx_buffer = 0
        self.tx_count = 0
        self.tx_buffer = 0
        self.address = 0
        # Programming completes at once, so the chip is ready right after a write.
        self.chip_ready = False

    def set_type(self, eeprom_type: EepromType) -> None:
        self.addr_bits = eeprom_type.address_bits
        self.memory.resize(eeprom_type.size)

    def _reset_rx_buffer(self) -> None:
        self.rx_buffer = 0
        self.rx_count = 0

    def _reset_tx_buffer(self) -> None:
        self.tx_buffer = 0
        self.tx_count = 0

    def _fill_tx_buffer(self) -> None:
        self.tx_buffer = int.from_bytes(
            bytes(self.memory.read(self.address + i) for i in range(8)), "big"
        )
        self.tx_count = 0

    def clock_data_in(self, address: int, si: int) -> None:
        """Shift one bit from the bus into the chip."""
        logger.debug("(%s) addr=%#x RX bit %d", self.state, address, si)
        self.rx_buffer = ((self.rx_buffer << 1) | (si & 1)) & _MASK64
        self.rx_count += 1

        state = self.state
        if state is SpiState.RX_INSTRUCTION:
            if self.rx_count >= 2:
                try:
                    self.instruction = SpiInstruction(self.rx_buffer)
                except ValueError:
                    raise ValueError(
                        f"invalid spi command {self.rx_buffer & 0xFF:#010b}"
                    ) from None
                self.state = SpiState.RX_ADDRESS
                self._reset_rx_buffer()
        elif state is SpiState.RX_ADDRESS:
            if self.rx_count == self.addr_bits:
                self.address = self.rx_buffer * 8
                logger.debug(
                    "%s mode, received address = %#x", self.instruction.name, self.address
                )
                if self.instruction is SpiInstruction.READ:
                    self.state = SpiState.STOP_BIT
                else:
                    self.state = SpiState.RX_DATA
                    self.chip_ready = False
                    self._reset_rx_buffer()
        elif state is SpiState.STOP_BIT and self.instruction is SpiInstruction.READ:
            self.state = SpiState.TX_DUMMY
            self._reset_rx_buffer()
            self._reset_tx_buffer()
        elif state is SpiState.RX_DATA:
            if self.rx_count == 64:
                logger.debug(
                    "writing %#x to memory address %#x", self.rx_buffer, self.address
                )
                for i, byte in enumerate(self.rx_buffer.to_bytes(8, "big")):
                    self.memory.write(self.address + i, byte)
                self.instruction = SpiInstruction.WRITE
                self.state = SpiState.STOP_BIT
                self._reset_rx_buffer()
        elif state is SpiState.STOP_BIT:
            self.chip_ready = True
            self.state = SpiState.RX_INSTRUCTION
            self._reset_rx_buffer()
            self._reset_tx_buffer()

    def clock_data_out(self, address: int) -> int:
        """Shift one bit from the chip onto the bus and return it."""
        state = self.state
        if state is SpiState.TX_DUMMY:
            self.tx_count += 1
            result = 0
            if self.tx_count == 4:
                self.state = SpiState.TX_DATA
                self._fill_tx_buffer()
                logger.debug("transmitting data bits, tx_buffer = %#x", self.tx_buffer)
        elif state is SpiState.TX_DATA:
            result = (self.tx_buffer >> 63) & 1
            self.tx_buffer = (self.tx_buffer << 1) & _MASK64
            self.tx_count += 1
            if self.tx_count == 64:
                self._reset_tx_buffer()
                self._reset_rx_buffer()
                self.state = SpiState.RX_INSTRUCTION
        else:
            result = 1 if self.chip_ready else 0
        logger.debug("(%s) addr=%#x TX bit %d", state, address, result)
        return result

    def is_transmitting(self) -> bool:
        return self.state in (SpiState.TX_DATA, SpiState.TX_DUMMY)

    def reset(self) -> None:
        self.state = SpiState.RX_INSTRUCTION
        self._reset_rx_buffer()
        self._reset_tx_buffer()


class EepromController:
    """EEPROM mapped at the top of cartridge space, usually driven by 16-bit DMA.

    Without an explicit ``eeprom_type`` the size is taken from an existing
    save file, or else detected from the first DMA transfer to the chip.
    """

    def __init__(
        self,
        path: Optional[PathLike] = None,
        eeprom_type: Optional[EepromType] = None,
    ) -> None:
        detect = False
        if eeprom_type is None:
            detect = True
            eeprom_type = EepromType.EEPROM512
            if path is not None and Path(path).exists():
                file_size = Path(path).stat().st_size
                if file_size == 512:
                    eeprom_type = EepromType.EEPROM512
                elif file_size == 8192:
                    eeprom_type = EepromType.EEPROM8K
                else:
                    raise ValueError(f"invalid file size ({file_size} B) for eeprom save")
                detect = False
                logger.info(
                    "save file is size %d B, assuming eeprom type is %s",
                    file_size,
                    eeprom_type.name,
                )
        memory = BackupFile(eeprom_type.size, path)
        self.chip = EepromChip(eeprom_type, memory)
        self.detect = detect

    def _require_detected(self) -> None:
        if self.detect:
            raise RuntimeError("eeprom size has not been detected yet")

    def write_half(self, address: int, value: int) -> None:
        self._require_detected()
        self.chip.clock_data_in(address, value & 0xFF)

    def read_half(self, address: int) -> int:
        self._require_detected()
        return self.chip.clock_data_out(address)

    def on_dma3_transfer(self, src: int, dst: int, count: int) -> None:
        """Observe a 16-bit DMA3 transfer to detect the chip size or resync its state."""
        if not self.detect:
            # A dirty state machine (misbehaving games, test ROMs) is reset before a new request.
            if not self.chip.is_transmitting():
                self.chip.reset()
            return

        if dst in _EEPROM_REGION:
            logger.debug(
                "caught eeprom dma transfer src=%#x dst=%#x count=%d", src, dst, count
            )
            if count in (9, 73):
                eeprom_type = EepromType.EEPROM512
            elif count in (17, 81):
                eeprom_type = EepromType.EEPROM8K
            else:
                raise ValueError(
                    f"unexpected bit count ({count}) when detecting eeprom size"
                )
            logger.info("detected eeprom type: %s", eeprom_type.name)
            self.chip.set_type(eeprom_type)
            self.detect = False
        elif src in _EEPROM_REGION:
            raise RuntimeError(
                "reading from eeprom before its size is detected is not supported"
            )