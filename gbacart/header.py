"""Parsing of the 192-byte cartridge header at the start of a ROM.

Layout (offsets from the start of the ROM):
  0A0h  12  game title
  0ACh   4  game code
  0B0h   2  maker code
  0BCh   1  software version
  0BDh   1  complement check over 0A0h..0BCh
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

from .errors import CartridgeLoadError

logger = logging.getLogger(__name__)

HEADER_SIZE = 0xC0


@dataclass(frozen=True)
class CartridgeHeader:
    game_title: str
    game_code: str
    maker_code: str
    software_version: int
    checksum: int


def calculate_checksum(data: bytes) -> int:
    """Complement check over the header bytes 0A0h..0BCh."""
    return (-sum(data) - 0x19) & 0xFF


def _decode(data: bytes, what: str) -> str:
    try:
        return data.decode("utf-8")
    except UnicodeDecodeError:
        raise CartridgeLoadError(f"invalid {what}") from None


def parse(data: bytes) -> CartridgeHeader:
    """Parse the header of a ROM image; a bad checksum is only logged."""
    if len(data) < HEADER_SIZE:
        raise CartridgeLoadError("incomplete cartridge header")

    checksum = data[0xBD]
    calculated = calculate_checksum(data[0xA0:0xBD])
    if calculated != checksum:
        logger.warning(
            "invalid header checksum, calculated %02x but expected %02x",
            calculated,
            checksum,
        )

    return CartridgeHeader(
        game_title=_decode(bytes(data[0xA0:0xAC]), "game title"),
        game_code=_decode(bytes(data[0xAC:0xB0]), "game code"),
        maker_code=_decode(bytes(data[0xB0:0xB2]), "marker code"),
        software_version=data[0xBC],
        checksum=checksum,
    )