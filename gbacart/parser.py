"""Parser for the debugger's command line: commands, assignments and values."""

from __future__ import annotations

import string
from dataclasses import dataclass
from enum import Enum, auto
from typing import Callable, Tuple, Union

_SPACE = " \t\r\n"
_DIGITS = "0123456789"
_HEX_DIGITS = frozenset(string.hexdigits)
_U32_MAX = 0xFFFF_FFFF


class ParsingError(ValueError):
    """The debugger input could not be parsed."""


class DerefType(Enum):
    WORD = auto()
    HALF_WORD = auto()
    BYTE = auto()


@dataclass(frozen=True)
class Num:
    value: int


@dataclass(frozen=True)
class Boolean:
    value: bool


@dataclass(frozen=True)
class Identifier:
    name: str


@dataclass(frozen=True)
class Deref:
    target: "Value"
    deref_type: DerefType


Value = Union[Num, Boolean, Identifier, Deref]


@dataclass(frozen=True)
class Command:
    """``command-name arg0 arg1 ...``"""

    name: Value
    args: Tuple[Value, ...] = ()


@dataclass(frozen=True)
class Assignment:
    """``lvalue = rvalue``"""

    lvalue: Value
    rvalue: Value


@dataclass(frozen=True)
class Empty:
    pass


Expr = Union[Command, Assignment, Empty]


class _Mismatch(Exception):
    """Recoverable: an alternative may still match."""

    def __init__(self, pos: int, expected: str) -> None:
        super().__init__(pos, expected)
        self.pos = pos
        self.expected = expected


class _Failure(Exception):
    """Unrecoverable: the input is committed to a form it does not follow."""

    def __init__(self, pos: int, expected: str) -> None:
        super().__init__(pos, expected)
        self.pos = pos
        self.expected = expected


_Parser = Callable[[str, int], Tuple[object, int]]


def _multispace0(text: str, pos: int) -> int:
    while pos < len(text) and text[pos] in _SPACE:
        pos += 1
    return pos


def _multispace1(text: str, pos: int) -> int:
    end = _multispace0(text, pos)
    if end == pos:
        raise _Mismatch(pos, "whitespace")
    return end


def _parse_hex(text: str, pos: int) -> Tuple[Num, int]:
    if not text.startswith("0x", pos):
        raise _Mismatch(pos, "hex")
    start = end = pos + 2
    while end < len(text) and end - start < 8 and text[end] in _HEX_DIGITS:
        end += 1
    if end == start:
        raise _Mismatch(start, "hex digit")
    return Num(int(text[start:end], 16)), end


def _parse_u32(text: str, pos: int) -> Tuple[Num, int]:
    end = pos
    while end < len(text) and text[end] in _DIGITS:
        end += 1
    if end == pos:
        raise _Mismatch(pos, "u32")
    number = int(text[pos:end])
    if number > _U32_MAX:
        raise _Mismatch(pos, "u32")
    return Num(number), end


def _parse_num(text: str, pos: int) -> Tuple[Num, int]:
    try:
        return _parse_hex(text, pos)
    except _Mismatch:
        return _parse_u32(text, pos)


def _parse_boolean(text: str, pos: int) -> Tuple[Boolean, int]:
    for word, value in (("true", True), ("false", False)):
        if text.startswith(word, pos):
            return Boolean(value), pos + len(word)
    raise _Mismatch(pos, "bool")


def _is_identifier_char(ch: str) -> bool:
    return ch.isalnum() or ch in "_-"


def _parse_identifier(text: str, pos: int) -> Tuple[Identifier, int]:
    end = pos
    while end < len(text) and _is_identifier_char(text[end]):
        end += 1
    if end == pos:
        raise _Mismatch(pos, "identifier")
    return Identifier(text[pos:end]), end


_DEREF_TAGS = (("u32*", DerefType.WORD), ("u16*", DerefType.HALF_WORD), ("u8*", DerefType.BYTE))


def _parse_deref_type(text: str, pos: int) -> Tuple[DerefType, int]:
    if not text.startswith("(", pos):
        raise _Mismatch(pos, "'('")
    for tag, deref_type in _DEREF_TAGS:
        if text.startswith(tag, pos + 1):
            end = pos + 1 + len(tag)
            if text.startswith(")", end):
                return deref_type, end + 1
            raise _Mismatch(end, "')'")
    raise _Mismatch(pos + 1, "deref type")


def _first_of(text: str, pos: int, *parsers: _Parser):
    last = _Mismatch(pos, "value")
    for parser in parsers:
        try:
            return parser(text, pos)
        except _Mismatch as exc:
            last = exc
    raise last


def _parse_deref(text: str, pos: int) -> Tuple[Deref, int]:
    if not text.startswith("*", pos):
        raise _Mismatch(pos, "'*'")
    pos += 1
    try:
        try:
            deref_type, pos = _parse_deref_type(text, pos)
        except _Mismatch:
            deref_type = DerefType.WORD
        target, pos = _first_of(text, pos, _parse_num, _parse_identifier)
    except _Mismatch as exc:
        raise _Failure(exc.pos, f"{exc.expected} in deref") from None
    return Deref(target, deref_type), pos


def _parse_value(text: str, pos: int) -> Tuple[Value, int]:
    return _first_of(text, pos, _parse_boolean, _parse_deref, _parse_num, _parse_identifier)


def _parse_command(text: str, pos: int) -> Tuple[Command, int]:
    name, pos = _parse_identifier(text, pos)
    pos = _multispace0(text, pos)
    args = []
    try:
        value, pos = _parse_value(text, pos)
    except _Mismatch:
        return Command(name, ()), pos
    args.append(value)
    while True:
        try:
            after_space = _multispace1(text, pos)
            value, after_value = _parse_value(text, after_space)
        except _Mismatch:
            break
        args.append(value)
        pos = after_value
    return Command(name, tuple(args)), pos


def _parse_assignment(text: str, pos: int) -> Tuple[Assignment, int]:
    lvalue, pos = _parse_value(text, pos)
    pos = _multispace0(text, pos)
    if not text.startswith("=", pos):
        raise _Mismatch(pos, "'='")
    pos = _multispace0(text, pos + 1)
    try:
        rvalue, pos = _parse_value(text, pos)
    except _Mismatch as exc:
        raise _Failure(exc.pos, f"{exc.expected} in assignment") from None
    return Assignment(lvalue, rvalue), pos


def _error(text: str, failure: Union[_Failure, _Mismatch]) -> ParsingError:
    return ParsingError(
        f"at position {failure.pos}: expected {failure.expected}\n"
        f"{text}\n{' ' * failure.pos}^"
    )


def parse_deref(text: str) -> Tuple[Deref, str]:
    """Parse a dereference such as ``*(u16*)0x1234``; return it and the rest of the input."""
    try:
        value, pos = _parse_deref(text, 0)
    except (_Mismatch, _Failure) as exc:
        raise _error(text, exc) from None
    return value, text[pos:]


def parse_expr(text: str) -> Expr:
    """Parse one line of debugger input; trailing unparsed input is ignored."""
    pos = _multispace0(text, 0)
    try:
        try:
            return _parse_assignment(text, pos)[0]
        except _Mismatch:
            pass
        try:
            return _parse_command(text, pos)[0]
        except _Mismatch:
            return Empty()
    except _Failure as exc:
        raise _error(text, exc) from None