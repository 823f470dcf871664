import pytest

from gbacart.dma import (
    IRQ_DMA0,
    REG_FIFO_A,
    REG_FIFO_B,
    TIMING_SPECIAL,
    TIMING_VBLANK,
    DmaActivateChannel,
    DmaChannel,
    DmaChannelCtrl,
    DmaController,
    MemoryAccess,
)
from gbacart.eeprom import EepromController, EepromType


class FakeBus:
    def __init__(self, cartridge=None):
        self.mem = {}
        self.loads = []
        self.stores = []
        self.cartridge = cartridge

    def _load(self, addr, access):
        self.loads.append((addr, access))
        return self.mem.get(addr, 0)

    def _store(self, addr, value, access):
        self.stores.append((addr, value, access))
        self.mem[addr] = value

    load_16 = _load
    load_32 = _load
    store_16 = _store
    store_32 = _store


class FakeScheduler:
    def __init__(self):
        self.events = []

    def schedule(self, event, delay):
        self.events.append((event, delay))


class FakeCartridge:
    def __init__(self, backup):
        self.backup = backup


def make_ctrl(*, enabled=True, timing=0, repeat=False, word32=False, irq=False,
              src_adj=0, dst_adj=0):
    return (dst_adj << 5 | src_adj << 7 | int(repeat) << 9 | int(word32) << 10
            | timing << 12 | int(irq) << 14 | int(enabled) << 15)


def program(dmac, channel_id, src, dst, count, ctrl, scheduler):
    dmac.write_16(channel_id, 0, src & 0xFFFF, scheduler)
    dmac.write_16(channel_id, 2, src >> 16, scheduler)
    dmac.write_16(channel_id, 4, dst & 0xFFFF, scheduler)
    dmac.write_16(channel_id, 6, dst >> 16, scheduler)
    dmac.write_16(channel_id, 8, count, scheduler)
    dmac.write_16(channel_id, 10, ctrl, scheduler)


def test_invalid_channel_id():
    with pytest.raises(ValueError):
        DmaChannel(4)


def test_ctrl_fields_round_trip():
    ctrl = DmaChannelCtrl(make_ctrl(timing=TIMING_SPECIAL, repeat=True, word32=True,
                                    irq=True, src_adj=2, dst_adj=3))
    assert ctrl.is_enabled
    assert ctrl.timing == TIMING_SPECIAL
    assert ctrl.repeat and ctrl.is_32bit and ctrl.is_triggering_irq
    assert (ctrl.src_adj, ctrl.dst_adj) == (2, 3)
    before = ctrl.value
    ctrl.is_enabled = False
    assert not ctrl.is_enabled
    assert ctrl.value == before & 0x7FFF


def test_address_registers_mask_high_bits():
    channel = DmaChannel(0)
    channel.write_src_low(0x1234)
    channel.write_src_high(0xFFFF)
    assert channel.src == 0x0FFF1234
    channel.write_dst_high(0x0300)
    channel.write_dst_low(0x0010)
    assert channel.dst == 0x03000010


def test_irq_numbers():
    assert DmaChannel(0).irq == IRQ_DMA0
    assert [c.irq for c in DmaController().channels] == [IRQ_DMA0 + i for i in range(4)]


def test_immediate_32bit_transfer():
    signals = []
    dmac = DmaController(signals.append)
    sched = FakeScheduler()
    bus = FakeBus()
    src, dst = 0x02000000, 0x03000000
    for i in range(4):
        bus.mem[src + 4 * i] = 0x1000 + i
    program(dmac, 0, src, dst, 4, make_ctrl(word32=True, irq=True), sched)

    assert sched.events == [(DmaActivateChannel(0), 3)]
    assert not dmac.is_active()
    dmac.activate_channel(0)
    assert dmac.is_active()
    dmac.perform_work(bus)

    assert [bus.mem[dst + 4 * i] for i in range(4)] == [bus.mem[src + 4 * i] for i in range(4)]
    assert bus.stores[0][2] is MemoryAccess.NON_SEQ
    assert all(access is MemoryAccess.SEQ for _, _, access in bus.stores[1:])
    assert signals == [dmac.channels[0].irq]
    assert not dmac.is_active()
    assert not dmac.channels[0].ctrl.is_enabled
    assert not dmac.channels[0].running


def test_16bit_decrementing_source():
    dmac = DmaController()
    sched = FakeScheduler()
    bus = FakeBus()
    src, dst = 0x02000010, 0x03000000
    for i in range(3):
        bus.mem[src - 2 * i] = 0x20 + i
    program(dmac, 1, src, dst, 3, make_ctrl(src_adj=1), sched)
    dmac.activate_channel(1)
    dmac.perform_work(bus)
    assert [bus.mem[dst + 2 * i] for i in range(3)] == [bus.mem[src - 2 * i] for i in range(3)]


def test_fixed_destination():
    dmac = DmaController()
    bus = FakeBus()
    src, dst = 0x02000000, 0x04000100
    for i in range(5):
        bus.mem[src + 2 * i] = i + 1
    program(dmac, 2, src, dst, 5, make_ctrl(dst_adj=2), FakeScheduler())
    dmac.activate_channel(2)
    dmac.perform_work(bus)
    assert {addr for addr, _, _ in bus.stores} == {dst}
    assert bus.mem[dst] == bus.mem[src + 8]


def test_zero_count_means_maximum():
    dmac = DmaController()
    bus = FakeBus()
    program(dmac, 0, 0x02000000, 0x03000000, 0, make_ctrl(src_adj=2, dst_adj=2),
            FakeScheduler())
    dmac.activate_channel(0)
    dmac.perform_work(bus)
    assert len(bus.stores) == 0x4000

    bus3 = FakeBus()
    program(dmac, 3, 0x02000000, 0x03000000, 0, make_ctrl(src_adj=2, dst_adj=2),
            FakeScheduler())
    dmac.activate_channel(3)
    dmac.perform_work(bus3)
    assert len(bus3.stores) == 0x10000


def test_repeat_with_reload_on_vblank():
    dmac = DmaController()
    sched = FakeScheduler()
    bus = FakeBus()
    dst = 0x03000000
    program(dmac, 0, 0x02000000, dst, 2,
            make_ctrl(timing=TIMING_VBLANK, repeat=True, dst_adj=3), sched)
    assert sched.events == []
    assert not dmac.is_active()

    dmac.notify_from_gpu(TIMING_VBLANK + 1)
    assert not dmac.is_active()
    dmac.notify_from_gpu(TIMING_VBLANK)
    assert dmac.is_active()
    dmac.perform_work(bus)
    first = [addr for addr, _, _ in bus.stores]

    dmac.notify_from_gpu(TIMING_VBLANK)
    dmac.perform_work(bus)
    second = [addr for addr, _, _ in bus.stores[len(first):]]
    assert first == second
    assert first[0] == dst
    assert dmac.channels[0].ctrl.is_enabled
    assert dmac.channels[0].running


def test_sound_fifo_mode():
    dmac = DmaController()
    sched = FakeScheduler()
    bus = FakeBus()
    src = 0x02000000
    program(dmac, 1, src, REG_FIFO_A, 0,
            make_ctrl(timing=TIMING_SPECIAL, repeat=True, word32=True, dst_adj=2), sched)
    assert dmac.channels[1].fifo_mode

    dmac.notify_sound_fifo(REG_FIFO_B)
    assert not dmac.is_active()
    dmac.notify_sound_fifo(REG_FIFO_A)
    assert dmac.is_active()
    dmac.perform_work(bus)

    assert [addr for addr, _, _ in bus.stores] == [REG_FIFO_A] * 4
    assert [addr for addr, _ in bus.loads] == [src + 4 * i for i in range(4)]
    assert dmac.channels[1].internal.src_addr == src + 16


def test_fifo_mode_only_for_channels_1_and_2():
    dmac = DmaController()
    program(dmac, 0, 0x02000000, REG_FIFO_A, 0,
            make_ctrl(timing=TIMING_SPECIAL, repeat=True), FakeScheduler())
    assert not dmac.channels[0].fifo_mode
    dmac.notify_sound_fifo(REG_FIFO_A)
    assert not dmac.is_active()


def test_disabling_deactivates_channel():
    dmac = DmaController()
    sched = FakeScheduler()
    program(dmac, 0, 0x02000000, 0x03000000, 1, make_ctrl(), sched)
    dmac.activate_channel(0)
    assert dmac.channels[0].running
    dmac.write_16(0, 10, make_ctrl(enabled=False), sched)
    assert not dmac.is_active()
    assert not dmac.channels[0].running


def test_invalid_offset():
    with pytest.raises(ValueError):
        DmaController().write_16(0, 12, 0, FakeScheduler())


def test_forbidden_source_adjustment():
    dmac = DmaController()
    program(dmac, 0, 0x02000000, 0x03000000, 1, make_ctrl(src_adj=3), FakeScheduler())
    dmac.activate_channel(0)
    with pytest.raises(ValueError):
        dmac.perform_work(FakeBus())


@pytest.mark.parametrize(
    "count, expected",
    [(9, EepromType.EEPROM512), (17, EepromType.EEPROM8K),
     (73, EepromType.EEPROM512), (81, EepromType.EEPROM8K)],
)
def test_dma3_detects_eeprom_size(count, expected):
    eeprom = EepromController(None)
    assert eeprom.detect
    bus = FakeBus(FakeCartridge(eeprom))
    dmac = DmaController()
    program(dmac, 3, 0x02000000, 0x0DFFFF00, count, make_ctrl(dst_adj=0),
            FakeScheduler())
    dmac.activate_channel(3)
    dmac.perform_work(bus)
    assert not eeprom.detect
    assert eeprom.chip.addr_bits == expected.address_bits
    assert len(eeprom.chip.memory.data) == expected.size