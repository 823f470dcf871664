# gbacart

Models of the hardware around a Game Boy Advance game cartridge. They are
pure Python and have no dependencies. You can use them as building blocks
for an emulator, or to inspect ROM images and save files.

## Modules

- `gbacart.header`: `parse(data)` reads the 192-byte ROM header into a
  frozen `CartridgeHeader` with fields `game_title`, `game_code`,
  `maker_code`, `software_version` and `checksum`.
  `calculate_checksum(data)` computes the complement check over bytes
  0A0h to 0BCh. A checksum that does not match is logged as a warning. A
  header that is too short or cannot be decoded raises
  `gbacart.errors.CartridgeLoadError`.
- `gbacart.loader`: `load_from_bytes` and `load_from_file` return the raw
  ROM bytes. If the input is a zip archive, they return its first `.gba`
  member instead. `try_load_zip` does the zip step alone.
- `gbacart.cartridge`: `Cartridge` holds the ROM, the save memory (in its
  `backup` member) and an optional GPIO port. It offers `read_8`,
  `read_16`, `write_8`, `write_16`, `debug_read_8`, `thin_copy` and
  `update_from`. Reads beyond the end of the ROM return the open-bus
  pattern given by `read_unused`. `GamepakBuilder` assembles a
  `Cartridge` from a buffer or a file. When no save type is forced, it
  detects one with `detect_backup_type` from library id strings in the
  ROM, and it creates the save memory with `create_backup`. By default the
  save memory is stored in a `.sav` file next to the ROM.
- `gbacart.backup`: `BackupType` (with `BackupType.parse` for the names
  `autodetect`, `sram`, `flash64k`, `flash128k`, `eeprom`) and
  `BackupFile`, a byte buffer mirrored to a file. A `BackupFile` can be
  used as a context manager to close the file.
- `gbacart.eeprom`: `EepromController` and `EepromChip`, the serial EEPROM
  driven one bit per 16-bit access. The 512-byte or 8 KiB size comes from
  an explicit `EepromType`, from the size of an existing save file, or
  from the first DMA3 transfer seen by `on_dma3_transfer`.
- `gbacart.flash`: `Flash`, a 64 KiB or 128 KiB (`FlashSize`) flash chip.
  It is driven by the magic write sequence and supports chip-id mode,
  sector and whole-chip erase, byte writes and bank selection.
- `gbacart.gpio`: `Gpio`, the four-pin cartridge GPIO port. It has data,
  direction and control registers.
- `gbacart.rtc`: `Rtc`, the S3511 serial real-time clock wired to the GPIO
  port. It also provides `SerialBuffer`, `StatusRegister` and `num2bcd`.
  The clock source can be passed in (`Rtc(clock=...)`). It defaults to
  `datetime.now`.
- `gbacart.dma`: `DmaController` and `DmaChannel`. They model the four DMA
  channels, their control register (`DmaChannelCtrl`), start timings and
  sound-FIFO mode.
- `gbacart.parser`: `parse_expr` parses a debugger input line into
  `Command`, `Assignment` or `Empty`. Values are `Num`, `Boolean`,
  `Identifier` and `Deref`. `parse_deref` parses a single dereference.
  Bad input raises `ParsingError`.

## Installation

```
pip install .
```

## Examples

Build a cartridge from a ROM image in memory, with SRAM that is not saved
to a file:

```python
from gbacart.cartridge import GamepakBuilder

cart = (
    GamepakBuilder()
    .buffer(rom_bytes)
    .with_sram()
    .without_backup_to_file()
    .build()
)
print(cart.header.game_title, cart.header.game_code)
```

Program one byte of flash with the standard command sequence:

```python
from gbacart.flash import Flash, FlashSize

flash = Flash(None, FlashSize.FLASH64K)
for addr, value in (
    (0x0E005555, 0xAA),
    (0x0E002AAA, 0x55),
    (0x0E005555, 0xA0),  # write byte
    (0x0E000010, 0x42),
):
    flash.write(addr, value)
assert flash.read(0x0E000010) == 0x42
```

Parse debugger input:

```python
from gbacart.parser import Assignment, Command, Identifier, Num, parse_expr

assert parse_expr("break 0x08000000") == Command(Identifier("break"), (Num(0x08000000),))
assert parse_expr("pc = 0x1337") == Assignment(Identifier("pc"), Num(0x1337))
```

`DmaController` needs two objects from the caller:

- A bus with `load_16`, `store_16`, `load_32` and `store_32` methods.
  Each takes an address and a `MemoryAccess`.
- A scheduler with `schedule(event, delay)`. When a channel is enabled
  with immediate timing, the controller schedules a `DmaActivateChannel`
  event with a delay of 3.

If the bus has a `cartridge` attribute whose backup is an
`EepromController`, 16-bit DMA3 transfers are reported to it.

## What this package does not do

The package covers the cartridge, save memory, RTC and DMA only. It has
no CPU, no system bus, no graphics, sound, timers or interrupt
controller, and no event scheduler. It cannot run a game. It has no
interactive debugger, no GDB server, no save states and no loading of
ELF images or symbol files. `parse_expr` only turns text into
expressions and does not carry them out. It provides no command-line
program.

## Running the tests

```
pip install .[test]
pytest
```