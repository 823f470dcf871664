"""Four-channel DMA controller that copies data over the system bus."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum, auto
from typing import Any, Callable, Optional, Protocol

from .eeprom import EepromController

logger = logging.getLogger(__name__)

REG_FIFO_A = 0x0400_00A0
REG_FIFO_B = 0x0400_00A4

TIMING_IMMEDIATE = 0
TIMING_VBLANK = 1
TIMING_HBLANK = 2
TIMING_SPECIAL = 3

IRQ_DMA0 = 8
DMA_START_DELAY = 3

_MASK32 = 0xFFFF_FFFF


class MemoryAccess(Enum):
    NON_SEQ = auto()
    SEQ = auto()


class DmaBus(Protocol):
    """The memory operations a DMA transfer needs from the system bus."""

    def load_16(self, addr: int, access: MemoryAccess) -> int: ...

    def store_16(self, addr: int, value: int, access: MemoryAccess) -> None: ...

    def load_32(self, addr: int, access: MemoryAccess) -> int: ...

    def store_32(self, addr: int, value: int, access: MemoryAccess) -> None: ...


class Scheduler(Protocol):
    def schedule(self, event: Any, delay: int) -> None: ...


@dataclass(frozen=True)
class DmaActivateChannel:
    """Scheduler event that starts a channel once its start delay has passed."""

    channel_id: int


class DmaChannelCtrl:
    """The 16-bit DMA control register."""

    def __init__(self, value: int = 0) -> None:
        self.value = value & 0xFFFF

    def _bits(self, lo: int, width: int) -> int:
        return (self.value >> lo) & ((1 << width) - 1)

    @property
    def dst_adj(self) -> int:
        return self._bits(5, 2)

    @property
    def src_adj(self) -> int:
        return self._bits(7, 2)

    @property
    def repeat(self) -> bool:
        return bool(self._bits(9, 1))

    @property
    def is_32bit(self) -> bool:
        return bool(self._bits(10, 1))

    @property
    def timing(self) -> int:
        return self._bits(12, 2)

    @property
    def is_triggering_irq(self) -> bool:
        return bool(self._bits(14, 1))

    @property
    def is_enabled(self) -> bool:
        return bool(self._bits(15, 1))

    @is_enabled.setter
    def is_enabled(self, on: bool) -> None:
        if on:
            self.value |= 0x8000
        else:
            self.value &= 0x7FFF

    def __eq__(self, other: object) -> bool:
        return isinstance(other, DmaChannelCtrl) and other.value == self.value

    def __repr__(self) -> str:
        return (
            f"DmaChannelCtrl({self.value:#06x}, dst_adj={self.dst_adj}, "
            f"src_adj={self.src_adj}, repeat={self.repeat}, is_32bit={self.is_32bit}, "
            f"timing={self.timing}, irq={self.is_triggering_irq}, "
            f"enabled={self.is_enabled})"
        )


@dataclass
class _InternalRegs:
    """Registers latched when the channel is enabled."""

    src_addr: int = 0
    dst_addr: int = 0
    count: int = 0


class DmaChannel:
    """One DMA channel with its programmable and latched registers."""

    def __init__(
        self, channel_id: int, signal_irq: Optional[Callable[[int], None]] = None
    ) -> None:
        if not 0 <= channel_id <= 3:
            raise ValueError(f"invalid dma id {channel_id}")
        self.id = channel_id
        self.irq = IRQ_DMA0 + channel_id
        self.signal_irq = signal_irq
        self.src = 0
        self.dst = 0
        self.wc = 0
        self.ctrl = DmaChannelCtrl(0)
        self.internal = _InternalRegs()
        self.running = False
        self.fifo_mode = False

    def write_src_low(self, low: int) -> None:
        self.src = (self.src & 0xFFFF_0000) | (low & 0xFFFF)

    def write_src_high(self, high: int) -> None:
        self.src = (self.src & 0xFFFF) | ((high & 0xFFF) << 16)

    def write_dst_low(self, low: int) -> None:
        self.dst = (self.dst & 0xFFFF_0000) | (low & 0xFFFF)

    def write_dst_high(self, high: int) -> None:
        self.dst = (self.dst & 0xFFFF) | ((high & 0xFFF) << 16)

    def write_word_count(self, value: int) -> None:
        self.wc = value & 0xFFFF

    def write_dma_ctrl(self, value: int) -> bool:
        """Write the control register; return True if the transfer starts immediately."""
        ctrl = DmaChannelCtrl(value)
        timing = ctrl.timing
        start_immediately = False
        if ctrl.is_enabled and not self.ctrl.is_enabled:
            logger.debug(
                "DMA%d enabled! timing=%d src=%#x dst=%#x cnt=%d",
                self.id,
                timing,
                self.src,
                self.dst,
                self.wc,
            )
            self.running = True
            start_immediately = timing == TIMING_IMMEDIATE
            self.internal = _InternalRegs(self.src, self.dst, self.wc)
            self.fifo_mode = (
                timing == TIMING_SPECIAL
                and ctrl.repeat
                and self.id in (1, 2)
                and self.dst in (REG_FIFO_A, REG_FIFO_B)
            )
        if not ctrl.is_enabled:
            self.running = False
        self.ctrl = ctrl
        return start_immediately

    def _notify_eeprom(self, bus: DmaBus, count: int) -> None:
        backup = getattr(getattr(bus, "cartridge", None), "backup", None)
        if isinstance(backup, EepromController):
            backup.on_dma3_transfer(self.internal.src_addr, self.internal.dst_addr, count)

    def transfer(self, bus: DmaBus) -> None:
        """Run one complete transfer of this channel over ``bus``."""
        ctrl = self.ctrl
        regs = self.internal
        word_size = 4 if ctrl.is_32bit else 2
        count = regs.count or (0x1_0000 if self.id == 3 else 0x0_4000)

        if self.id == 3 and word_size == 2:
            self._notify_eeprom(bus, count)

        src_adj = {0: word_size, 1: -word_size, 2: 0}.get(ctrl.src_adj)
        if src_adj is None:
            raise ValueError("forbidden DMA source address adjustment")
        dst_adj = {0: word_size, 3: word_size, 1: -word_size, 2: 0}[ctrl.dst_adj]

        access = MemoryAccess.NON_SEQ
        if self.fifo_mode:
            for _ in range(4):
                value = bus.load_32(regs.src_addr & ~3 & _MASK32, access)
                bus.store_32(regs.dst_addr & ~3 & _MASK32, value, access)
                access = MemoryAccess.SEQ
                regs.src_addr = (regs.src_addr + 4) & _MASK32
        else:
            if word_size == 4:
                load, store, align = bus.load_32, bus.store_32, ~3 & _MASK32
            else:
                load, store, align = bus.load_16, bus.store_16, ~1 & _MASK32
            for _ in range(count):
                value = load(regs.src_addr & align, access)
                store(regs.dst_addr & align, value, access)
                access = MemoryAccess.SEQ
                regs.src_addr = (regs.src_addr + src_adj) & _MASK32
                regs.dst_addr = (regs.dst_addr + dst_adj) & _MASK32

        if ctrl.is_triggering_irq and self.signal_irq is not None:
            self.signal_irq(self.irq)
        if ctrl.repeat:
            if ctrl.dst_adj == 3:
                regs.dst_addr = self.dst
        else:
            self.running = False
            ctrl.is_enabled = False

    def __repr__(self) -> str:
        return (
            f"DmaChannel(id={self.id}, src={self.src:#x}, dst={self.dst:#x}, "
            f"wc={self.wc}, ctrl={self.ctrl!r}, running={self.running})"
        )


class DmaController:
    """The four DMA channels and the set of channels waiting to run."""

    def __init__(self, signal_irq: Optional[Callable[[int], None]] = None) -> None:
        self.channels = tuple(DmaChannel(i, signal_irq) for i in range(4))
        self.pending_set = 0

    def connect_irq(self, signal_irq: Callable[[int], None]) -> None:
        for channel in self.channels:
            channel.signal_irq = signal_irq

    def is_active(self) -> bool:
        return self.pending_set != 0

    def perform_work(self, bus: DmaBus) -> None:
        """Run every pending channel in priority order, then clear the pending set."""
        for channel in self.channels:
            if self.pending_set & (1 << channel.id):
                channel.transfer(bus)
        self.pending_set = 0

    def write_16(self, channel_id: int, ofs: int, value: int, scheduler: Scheduler) -> None:
        channel = self.channels[channel_id]
        if ofs == 0:
            channel.write_src_low(value)
        elif ofs == 2:
            channel.write_src_high(value)
        elif ofs == 4:
            channel.write_dst_low(value)
        elif ofs == 6:
            channel.write_dst_high(value)
        elif ofs == 8:
            channel.write_word_count(value)
        elif ofs == 10:
            if channel.write_dma_ctrl(value):
                # The transfer really starts a few cycles after the write.
                scheduler.schedule(DmaActivateChannel(channel_id), DMA_START_DELAY)
            else:
                self.deactivate_channel(channel_id)
        else:
            raise ValueError(f"Invalid dma offset {ofs:x}")

    def notify_from_gpu(self, timing: int) -> None:
        for channel in self.channels:
            if channel.ctrl.is_enabled and channel.ctrl.timing == timing:
                self.pending_set |= 1 << channel.id

    def notify_sound_fifo(self, fifo_addr: int) -> None:
        for channel in self.channels[1:3]:
            if (
                channel.ctrl.is_enabled
                and channel.running
                and channel.ctrl.timing == TIMING_SPECIAL
                and channel.dst == fifo_addr
            ):
                self.pending_set |= 1 << channel.id

    def activate_channel(self, channel_id: int) -> None:
        self.pending_set |= 1 << channel_id

    def deactivate_channel(self, channel_id: int) -> None:
        self.pending_set &= ~(1 << channel_id)

    def __repr__(self) -> str:
        return f"DmaController(pending_set={self.pending_set:#06b}, channels={self.channels!r})"