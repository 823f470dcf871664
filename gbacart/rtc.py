"""Model of the S3511 serial real-time clock wired to the cartridge GPIO port."""

from __future__ import annotations

import logging
from datetime import datetime
from enum import Enum, IntEnum, auto
from typing import Callable, Optional, Sequence

from .gpio import GpioDirection

logger = logging.getLogger(__name__)


def num2bcd(num: int) -> int:
    """Encode ``num`` (clamped to 99) as packed binary-coded decimal."""
    tens, units = divmod(min(num, 99), 10)
    return (tens << 4) | units


def _reverse_bits(byte: int) -> int:
    return int(f"{byte & 0xFF:08b}"[::-1], 2)


class Port(IntEnum):
    """Pin indices of the serial interface on the GPIO port."""

    SCK = 0
    """Serial clock"""
    SIO = 1
    """Serial I/O"""
    CS = 2
    """Chip select"""


class RegisterKind(IntEnum):
    """RTC register codes."""

    FORCE_RESET = 0
    DATE_TIME = 2
    FORCE_IRQ = 3
    STATUS = 4
    TIME = 6
    FREE = 7

    @property
    def param_count(self) -> int:
        return _PARAM_COUNTS[self]


_PARAM_COUNTS = {
    RegisterKind.FORCE_RESET: 0,
    RegisterKind.DATE_TIME: 7,
    RegisterKind.FORCE_IRQ: 0,
    RegisterKind.STATUS: 1,
    RegisterKind.TIME: 3,
    RegisterKind.FREE: 0,
}


class RtcState(Enum):
    """Phase of the serial protocol; transfer phases are qualified by the Rtc's transfer fields."""

    IDLE = auto()
    WAIT_FOR_CHIP_SELECT_HIGH = auto()
    GET_COMMAND_BYTE = auto()
    RX_FROM_MASTER = auto()
    TX_TO_MASTER = auto()


class SerialBuffer:
    """An LSB-first queue of up to eight bits."""

    def __init__(self) -> None:
        self.byte = 0
        self.counter = 0

    def push_bit(self, bit: bool) -> None:
        if self.counter == 8:
            return
        if bit:
            self.byte |= 1 << self.counter
        else:
            self.byte &= ~(1 << self.counter) & 0xFF
        self.counter += 1

    def pop_bit(self) -> Optional[bool]:
        if self.counter == 0:
            return None
        result = bool(self.byte & 1)
        self.byte >>= 1
        self.counter -= 1
        return result

    def reset(self) -> None:
        self.byte = 0
        self.counter = 0

    @property
    def count(self) -> int:
        return self.counter

    def __len__(self) -> int:
        return self.counter

    def is_empty(self) -> bool:
        return self.counter == 0

    def is_full(self) -> bool:
        return self.counter == 8

    def value(self) -> Optional[int]:
        """The bits collected so far, or None when empty."""
        if self.is_empty():
            return None
        return self.byte & ((1 << self.counter) - 1)

    def load_byte(self, value: int) -> None:
        self.byte = value & 0xFF
        self.counter = 8

    def take_byte(self) -> Optional[int]:
        result = self.value()
        self.reset()
        return result

    def __repr__(self) -> str:
        return f"SerialBuffer(byte={self.byte:#04x}, counter={self.counter})"


class StatusRegister:
    """The RTC status register; only the 24h-mode bit has an effect."""

    IGNORED_MASK = 0b1001_0101

    def __init__(self, value: int = 0) -> None:
        self.value = value & 0xFF

    def _bit(self, n: int) -> bool:
        return bool(self.value >> n & 1)

    def _set_bit(self, n: int, on: bool) -> None:
        if on:
            self.value |= 1 << n
        else:
            self.value &= ~(1 << n) & 0xFF

    @property
    def intfe(self) -> bool:
        return self._bit(1)

    @intfe.setter
    def intfe(self, on: bool) -> None:
        self._set_bit(1, on)

    @property
    def intme(self) -> bool:
        return self._bit(3)

    @intme.setter
    def intme(self, on: bool) -> None:
        self._set_bit(3, on)

    @property
    def intae(self) -> bool:
        return self._bit(5)

    @intae.setter
    def intae(self, on: bool) -> None:
        self._set_bit(5, on)

    @property
    def mode_24h(self) -> bool:
        return self._bit(6)

    @mode_24h.setter
    def mode_24h(self, on: bool) -> None:
        self._set_bit(6, on)

    @property
    def power_fail(self) -> bool:
        return self._bit(7)

    @power_fail.setter
    def power_fail(self, on: bool) -> None:
        self._set_bit(7, on)

    def read(self) -> int:
        return self.value

    def write(self, value: int) -> None:
        self.value = value & ~self.IGNORED_MASK & 0xFF

    def __repr__(self) -> str:
        return f"StatusRegister({self.value:#04x})"


class Rtc:
    """S3511 8-pin RTC, driven through the GPIO data register.

    ``clock`` supplies the current local time; it defaults to ``datetime.now``.
    While a transfer is in progress ``reg``, ``byte_count`` and ``byte_index``
    describe it.
    """

    def __init__(self, clock: Optional[Callable[[], datetime]] = None) -> None:
        self.clock = clock if clock is not None else datetime.now
        self.state = RtcState.IDLE
        self.reg: Optional[RegisterKind] = None
        self.byte_count = 0
        self.byte_index = 0
        self.sck = 0
        self.sio = 0
        self.cs = 0
        self.status = StatusRegister(0x82)
        self.serial_buffer = SerialBuffer()
        self.internal_buffer = bytearray(8)

    def _serial_read(self) -> None:
        self.serial_buffer.push_bit(bool(self.sio))

    def _go_idle(self) -> None:
        self.state = RtcState.IDLE
        self.reg = None
        self.byte_count = 0
        self.byte_index = 0
        self.serial_buffer.reset()

    def _force_reset(self) -> None:
        self._go_idle()
        self.status.write(0)

    def _serial_transfer_in_progress(self) -> bool:
        return self.state not in (RtcState.IDLE, RtcState.WAIT_FOR_CHIP_SELECT_HIGH)

    def _hour(self, now: datetime) -> int:
        if self.status.mode_24h:
            return now.hour
        hour12 = now.hour % 12 or 12
        return hour12 - 1

    def _load_register(self, reg: RegisterKind) -> None:
        """Load a register's contents into the internal buffer."""
        if reg is RegisterKind.STATUS:
            self.internal_buffer[0] = self.status.read()
        elif reg is RegisterKind.DATE_TIME:
            now = self.clock()
            if not 2000 <= now.year <= 2099:
                raise ValueError(f"year {now.year} cannot be represented by the RTC")
            self.internal_buffer[0:7] = bytes(
                num2bcd(v)
                for v in (
                    now.year % 100,
                    now.month,
                    now.day,
                    now.isoweekday(),
                    self._hour(now),
                    now.minute,
                    now.second,
                )
            )
        elif reg is RegisterKind.TIME:
            now = self.clock()
            self.internal_buffer[0:3] = bytes(
                num2bcd(v) for v in (self._hour(now), now.minute, now.second)
            )
        else:
            logger.warning("RTC: read %s not implemented", reg.name)

    def _store_register(self, reg: RegisterKind) -> None:
        if reg is RegisterKind.STATUS:
            self.status.write(self.internal_buffer[0])
        elif reg is RegisterKind.FORCE_RESET:
            self._force_reset()
        else:
            logger.warning("RTC: write %s not implemented", reg.name)

    @staticmethod
    def _require(gpio_state: Sequence[GpioDirection], port: Port, direction: GpioDirection) -> None:
        if gpio_state[port] != direction:
            raise ValueError(f"RTC: {port.name} pin must be {direction.name}")

    def write(self, gpio_state: Sequence[GpioDirection], data: int) -> None:
        """Drive the pins with ``data`` and advance the serial protocol."""
        self._require(gpio_state, Port.SCK, GpioDirection.OUT)
        self._require(gpio_state, Port.CS, GpioDirection.OUT)

        old_sck, old_cs = self.sck, self.cs
        self.sck = data >> Port.SCK & 1
        self.cs = data >> Port.CS & 1

        falling_edge = bool(old_sck) and not self.sck
        if falling_edge and gpio_state[Port.SIO] == GpioDirection.OUT:
            self.sio = data >> Port.SIO & 1

        if self.cs and not old_cs:
            logger.debug("RTC: CS went from low to high")

        if not self.cs and self._serial_transfer_in_progress():
            logger.debug("RTC: CS set low from state %s, resetting state", self.state.name)
            self._go_idle()
            return

        state = self.state
        if state is RtcState.IDLE:
            if self.sck and not self.cs:
                self.state = RtcState.WAIT_FOR_CHIP_SELECT_HIGH
        elif state is RtcState.WAIT_FOR_CHIP_SELECT_HIGH:
            if self.sck and self.cs:
                self.state = RtcState.GET_COMMAND_BYTE
                self.serial_buffer.reset()
        elif state is RtcState.GET_COMMAND_BYTE:
            if falling_edge:
                self._get_command_bit()
        elif state is RtcState.TX_TO_MASTER:
            if falling_edge:
                self._tx_bit(gpio_state)
        elif state is RtcState.RX_FROM_MASTER:
            if falling_edge:
                self._rx_bit(gpio_state)

    def _get_command_bit(self) -> None:
        self._serial_read()
        if not self.serial_buffer.is_full():
            return
        command = self.serial_buffer.take_byte()

        lsb_first = command & 0xF == 0b0110
        if not lsb_first:
            if command >> 4 != 0b0110:
                raise ValueError("RTC bad command format")
            command = _reverse_bits(command)

        try:
            reg = RegisterKind(command >> 4 & 0b111)
        except ValueError:
            raise ValueError("RTC bad register") from None
        byte_count = reg.param_count
        is_read = bool(command & 0x80)
        logger.debug(
            "RTC: got command: %s %s args len: %d",
            "READ" if is_read else "WRITE",
            reg.name,
            byte_count,
        )

        if byte_count:
            self.reg = reg
            self.byte_count = byte_count
            self.byte_index = 0
            if is_read:
                self._load_register(reg)
                self.state = RtcState.TX_TO_MASTER
            else:
                self.state = RtcState.RX_FROM_MASTER
            self.serial_buffer.reset()
        else:
            if is_read:
                raise ValueError(f"RTC: register {reg.name} cannot be read")
            self._store_register(reg)
            self._go_idle()

    def _tx_bit(self, gpio_state: Sequence[GpioDirection]) -> None:
        bit = self.serial_buffer.pop_bit()
        if bit is None:
            if self.byte_index >= self.byte_count:
                self._go_idle()
                return
            self.serial_buffer.load_byte(self.internal_buffer[self.byte_index])
            self.byte_index += 1
            bit = self.serial_buffer.pop_bit()

        logger.debug("RTC TX BIT %d", bit)
        self._require(gpio_state, Port.SIO, GpioDirection.IN)
        self.sio = int(bit)

        if self.serial_buffer.is_empty() and self.byte_index == self.byte_count:
            self._go_idle()

    def _rx_bit(self, gpio_state: Sequence[GpioDirection]) -> None:
        self._require(gpio_state, Port.SIO, GpioDirection.OUT)
        self._serial_read()
        if not self.serial_buffer.is_full():
            return
        self.internal_buffer[self.byte_index] = self.serial_buffer.take_byte()
        self.byte_index += 1
        if self.byte_index == self.byte_count:
            reg = self.reg
            self._go_idle()
            self._store_register(reg)

    def read(self, gpio_state: Sequence[GpioDirection]) -> int:
        """Return the current pin levels."""
        return self.sck << Port.SCK | self.sio << Port.SIO | self.cs << Port.CS

    def __repr__(self) -> str:
        return f"Rtc(state={self.state.name}, status={self.status!r})"