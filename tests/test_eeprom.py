import pytest

from gbacart.backup import BackupFile
from gbacart.eeprom import (
    EepromChip,
    EepromController,
    EepromType,
    SpiInstruction,
    SpiState,
)

EEPROM_BASE_ADDR = 0x0DFF_FF00


def _address_bits(address):
    address &= 0x3F
    return [(address >> shift) & 1 for shift in range(5, -1, -1)]


def make_spi_read_request(address):
    return [1, 1] + _address_bits(address) + [0]


def make_spi_write_request(address, value):
    bits = [1, 0] + _address_bits(address)
    for byte in value:
        bits.extend((byte >> shift) & 1 for shift in range(7, -1, -1))
    return bits + [0]


def send(spi, stream):
    for half in stream:
        spi.write_half(EEPROM_BASE_ADDR, half)


def consume_dummy_cycles(spi):
    for _ in range(4):
        spi.read_half(EEPROM_BASE_ADDR)


def rx_data(spi):
    result = bytearray()
    for _ in range(8):
        byte = 0
        for _ in range(8):
            byte = ((byte << 1) & 0xFF) | spi.read_half(EEPROM_BASE_ADDR)
        result.append(byte)
    return bytes(result)


def test_spi_read_write():
    spi = EepromController(None, EepromType.EEPROM512)
    chip = spi.chip
    chip.memory.data[16:21] = b"TEST!"
    chip.memory.flush()

    expected = b"Work."

    send(spi, make_spi_read_request(2))
    consume_dummy_cycles(spi)
    data = rx_data(spi)
    assert data[0:5] == b"TEST!"
    assert chip.state is SpiState.RX_INSTRUCTION
    assert chip.rx_count == 0

    value = expected + bytes(3)
    send(spi, make_spi_write_request(2, value))
    assert bytes(chip.memory.data[0x10:0x15]) == expected
    assert chip.state is SpiState.RX_INSTRUCTION
    assert chip.rx_count == 0
    assert chip.tx_count == 0

    send(spi, make_spi_read_request(2))
    consume_dummy_cycles(spi)
    data = rx_data(spi)
    assert data[0:5] == expected
    assert chip.state is SpiState.RX_INSTRUCTION
    assert chip.rx_count == 0
    assert chip.tx_count == 0


def test_chip_reports_ready_after_write():
    spi = EepromController(None, EepromType.EEPROM512)
    send(spi, make_spi_write_request(1, bytes(8)))
    assert spi.chip.chip_ready is True
    assert spi.read_half(EEPROM_BASE_ADDR) == 1


def test_chip_not_ready_while_receiving_data():
    spi = EepromController(None, EepromType.EEPROM512)
    send(spi, make_spi_write_request(1, bytes(8))[:10])
    assert spi.chip.state is SpiState.RX_DATA
    assert spi.read_half(EEPROM_BASE_ADDR) == 0


def test_instruction_is_decoded():
    spi = EepromController(None, EepromType.EEPROM512)
    send(spi, [1, 0])
    assert spi.chip.state is SpiState.RX_ADDRESS
    assert spi.chip.instruction is SpiInstruction.WRITE


def test_invalid_instruction_raises():
    spi = EepromController(None, EepromType.EEPROM512)
    spi.write_half(EEPROM_BASE_ADDR, 0)
    with pytest.raises(ValueError, match="invalid spi command"):
        spi.write_half(EEPROM_BASE_ADDR, 0)


def test_chip_resizes_memory_to_type():
    memory = BackupFile(4)
    chip = EepromChip(EepromType.EEPROM8K, memory)
    assert len(chip.memory.data) == 0x2000
    assert chip.addr_bits == 14
    chip.set_type(EepromType.EEPROM512)
    assert len(chip.memory.data) == 0x0200
    assert chip.addr_bits == 6


def test_access_before_detection_raises():
    spi = EepromController()
    assert spi.detect is True
    with pytest.raises(RuntimeError):
        spi.write_half(EEPROM_BASE_ADDR, 1)
    with pytest.raises(RuntimeError):
        spi.read_half(EEPROM_BASE_ADDR)


@pytest.mark.parametrize(
    "count, eeprom_type",
    [
        (9, EepromType.EEPROM512),
        (17, EepromType.EEPROM8K),
        (73, EepromType.EEPROM512),
        (81, EepromType.EEPROM8K),
    ],
)
def test_detection_from_dma(count, eeprom_type):
    spi = EepromController()
    spi.on_dma3_transfer(0x0200_0000, 0x0D00_0000, count)
    assert spi.detect is False
    assert spi.chip.addr_bits == eeprom_type.address_bits
    assert len(spi.chip.memory.data) == eeprom_type.size


def test_detection_with_unexpected_count_raises():
    spi = EepromController()
    with pytest.raises(ValueError, match="unexpected bit count"):
        spi.on_dma3_transfer(0x0200_0000, 0x0D00_0000, 12)


def test_read_dma_before_detection_raises():
    spi = EepromController()
    with pytest.raises(RuntimeError):
        spi.on_dma3_transfer(0x0D00_0000, 0x0200_0000, 9)


def test_unrelated_dma_keeps_detecting():
    spi = EepromController()
    spi.on_dma3_transfer(0x0200_0000, 0x0300_0000, 9)
    assert spi.detect is True


def test_dma_resets_dirty_state_machine():
    spi = EepromController(None, EepromType.EEPROM512)
    send(spi, [1, 1, 0])
    assert spi.chip.state is SpiState.RX_ADDRESS
    spi.on_dma3_transfer(0x0200_0000, EEPROM_BASE_ADDR, 9)
    assert spi.chip.state is SpiState.RX_INSTRUCTION
    assert spi.chip.rx_count == 0


def test_dma_keeps_transmitting_state():
    spi = EepromController(None, EepromType.EEPROM512)
    send(spi, make_spi_read_request(0))
    assert spi.chip.is_transmitting()
    spi.on_dma3_transfer(EEPROM_BASE_ADDR, 0x0200_0000, 68)
    assert spi.chip.state is SpiState.TX_DUMMY


def test_existing_save_size_selects_type(tmp_path):
    path = tmp_path / "game.sav"
    path.write_bytes(b"\xff" * 8192)
    spi = EepromController(path)
    assert spi.detect is False
    assert spi.chip.addr_bits == 14


def test_existing_save_with_bad_size_raises(tmp_path):
    path = tmp_path / "game.sav"
    path.write_bytes(b"\xff" * 100)
    with pytest.raises(ValueError, match="invalid file size"):
        EepromController(path)


def test_writes_persist_to_save_file(tmp_path):
    path = tmp_path / "game.sav"
    spi = EepromController(path, EepromType.EEPROM512)
    send(spi, make_spi_write_request(3, b"ABCDEFGH"))
    spi.chip.memory.close()
    content = path.read_bytes()
    assert content[24:32] == b"ABCDEFGH"
    assert len(content) == 512