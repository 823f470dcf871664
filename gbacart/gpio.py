"""General-purpose I/O port on the cartridge bus, used by devices such as an RTC."""

from __future__ import annotations

from enum import IntEnum
from typing import Optional, Protocol, Sequence

GPIO_PORT_DATA = 0xC4
GPIO_PORT_DIRECTION = 0xC6
GPIO_PORT_CONTROL = 0xC8


class GpioDirection(IntEnum):
    IN = 0
    """GPIO to GBA"""
    OUT = 1
    """GBA to GPIO"""


class GpioPortControl(IntEnum):
    WRITE_ONLY = 0
    READ_WRITE = 1


class GpioDevice(Protocol):
    def write(self, gpio_state: Sequence[GpioDirection], data: int) -> None: ...

    def read(self, gpio_state: Sequence[GpioDirection]) -> int: ...


class Gpio:
    """The four-pin GPIO port, optionally wired to a device."""

    def __init__(self, rtc: Optional[GpioDevice] = None) -> None:
        self.rtc = rtc
        self.direction = [GpioDirection.OUT] * 4
        self.control = GpioPortControl.WRITE_ONLY

    def is_readable(self) -> bool:
        return self.control != GpioPortControl.WRITE_ONLY

    def read(self, addr: int) -> int:
        """Read one of the three port registers."""
        if addr == GPIO_PORT_DATA:
            return self.rtc.read(tuple(self.direction)) if self.rtc is not None else 0
        if addr == GPIO_PORT_DIRECTION:
            return sum(
                1 << i for i, d in enumerate(self.direction) if d is GpioDirection.OUT
            )
        if addr == GPIO_PORT_CONTROL:
            return int(self.control)
        raise ValueError(f"invalid gpio register {addr:#x}")

    def write(self, addr: int, value: int) -> None:
        """Write one of the three port registers."""
        if addr == GPIO_PORT_DATA:
            if self.rtc is not None:
                self.rtc.write(tuple(self.direction), value)
        elif addr == GPIO_PORT_DIRECTION:
            self.direction = [
                GpioDirection.OUT if value >> i & 1 else GpioDirection.IN
                for i in range(4)
            ]
        elif addr == GPIO_PORT_CONTROL:
            self.control = (
                GpioPortControl.READ_WRITE if value != 0 else GpioPortControl.WRITE_ONLY
            )
        else:
            raise ValueError(f"invalid gpio register {addr:#x}")

    def __repr__(self) -> str:
        return (
            f"Gpio(rtc={self.rtc!r}, direction={[d.name for d in self.direction]}, "
            f"control={self.control.name})"
        )