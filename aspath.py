# Copyright (c) 2022 Pieter Wuille
# Distributed under the MIT software license, see the accompanying
# file LICENSE or http://www.opensource.org/licenses/mit-license.php.

"""
This module decodes the AS path out of the raw BGP path attributes stored
with every RIB entry in an MRT dump.

Every path attribute is encoded as:
- 1 byte of flags. If bit 4 (0x10) is set, the length field is 2 bytes long
  instead of 1.
- 1 byte type code. AS_PATH has type code 2.
- The length field (big endian), followed by that many bytes of value.

The value of an AS_PATH attribute starts with a segment:
- 1 byte segment type: 1 for AS_SET, 2 for AS_SEQUENCE.
- 1 byte number of ASNs n.
- n 4-byte big endian ASNs.

Only AS_SEQUENCE segments are used. An AS_SET is an unordered aggregate of
ASNs, so there is no way to place it on a path.
"""

import itertools
from typing import List, Optional

from bottleneck_errors import (
    MissingPathAttribute,
    MultipleAsPaths,
    NoAsPathInAttributePath,
    UnexpectedEndOfBuffer,
    UnknownAsValue,
    UnknownTypeCode,
)

FLAG_EXTENDED_LENGTH = 0x10

ATTR_AS_PATH = 2
# Type codes accepted in strict mode.
KNOWN_TYPE_CODES = frozenset(range(1, 17))

SEGMENT_AS_SET = 1
SEGMENT_AS_SEQUENCE = 2


class AttributeCursor:
    """A forward-only reader over a byte buffer that never reads past its end."""

    def __init__(self, buffer: bytes, start: int = 0, end: Optional[int] = None) -> None:
        self._buffer = buffer
        self._pos = start
        self._end = len(buffer) if end is None else end
        assert 0 <= self._pos <= self._end <= len(buffer)

    @property
    def position(self) -> int:
        return self._pos

    def remaining(self) -> int:
        return self._end - self._pos

    def at_end(self) -> bool:
        return self._pos >= self._end

    def _need(self, count: int) -> None:
        if count > self._end - self._pos:
            raise UnexpectedEndOfBuffer(self._pos, count, self._end - self._pos)

    def advance(self) -> int:
        """Return the next byte and move past it."""
        self._need(1)
        byte = self._buffer[self._pos]
        self._pos += 1
        return byte

    def read_u16_be(self) -> int:
        return (self.advance() << 8) | self.advance()

    def read_u32_be(self) -> int:
        val = 0
        for _ in range(4):
            val = (val << 8) | self.advance()
        return val

    def skip(self, count: int) -> None:
        """Move forward count bytes. Nothing moves if fewer bytes remain."""
        self._need(count)
        self._pos += count

    def take(self, count: int) -> "AttributeCursor":
        """Split off the next count bytes as a separate cursor, and move past them."""
        self._need(count)
        sub = AttributeCursor(self._buffer, self._pos, self._pos + count)
        self._pos += count
        return sub


class AsPathParser:
    """
    Decoder for one RIB entry's path attributes.

    After parse() returns, as_sets holds the number of AS_SET segments that
    were skipped. With strict set, attribute type codes outside 1..16 are an
    error rather than being skipped.
    """

    def __init__(self, raw: bytes, strict: bool = False) -> None:
        self._cursor = AttributeCursor(raw)
        self.strict = strict
        self.as_sets = 0

    def parse(self) -> List[int]:
        if self._cursor.at_end():
            raise MissingPathAttribute()
        paths = []
        while not self._cursor.at_end():
            path = self._parse_attribute()
            if path is not None:
                if len(path) == 0:
                    raise NoAsPathInAttributePath()
                paths.append(path)
        if len(paths) > 1:
            raise MultipleAsPaths(len(paths))
        if len(paths) == 0:
            raise NoAsPathInAttributePath()
        return paths[0]

    def _parse_attribute(self) -> Optional[List[int]]:
        flags = self._cursor.advance()
        type_code = self._cursor.advance()
        if flags & FLAG_EXTENDED_LENGTH:
            length = self._cursor.read_u16_be()
        else:
            length = self._cursor.advance()
        # The value region is cut off first, so the next attribute header is
        # found at the declared length no matter how much of it is decoded.
        value = self._cursor.take(length)
        if type_code == ATTR_AS_PATH:
            return self._parse_segment(value)
        if self.strict and type_code not in KNOWN_TYPE_CODES:
            raise UnknownTypeCode(type_code)
        return None

    def _parse_segment(self, value: AttributeCursor) -> Optional[List[int]]:
        segment_type = value.advance()
        if segment_type == SEGMENT_AS_SET:
            count = value.advance()
            value.skip(4 * count)
            self.as_sets += 1
            return None
        if segment_type == SEGMENT_AS_SEQUENCE:
            count = value.advance()
            return [value.read_u32_be() for _ in range(count)]
        raise UnknownAsValue(segment_type)


def decode_as_path(raw: bytes, strict: bool = False) -> List[int]:
    """Decode the AS_SEQUENCE out of a raw attribute block, origin AS last."""
    return AsPathParser(raw, strict).parse()


def dedup(path: List[int]) -> List[int]:
    """Collapse prepending: [1, 1, 2, 3, 3, 3] -> [1, 2, 3]."""
    return [asn for asn, _ in itertools.groupby(path)]


def encode_attribute(type_code: int, value: bytes, flags: int = 0x40) -> bytes:
    """Encode one path attribute, switching to a 2-byte length when needed."""
    if len(value) > 0xff:
        flags |= FLAG_EXTENDED_LENGTH
    if flags & FLAG_EXTENDED_LENGTH:
        return bytes([flags, type_code]) + len(value).to_bytes(2, 'big') + value
    return bytes([flags, type_code, len(value)]) + value


def encode_as_path(path: List[int], segment_type: int = SEGMENT_AS_SEQUENCE) -> bytes:
    """Encode an AS_PATH attribute holding a single segment."""
    assert len(path) <= 0xff
    value = bytes([segment_type, len(path)]) + b"".join(asn.to_bytes(4, 'big') for asn in path)
    return encode_attribute(ATTR_AS_PATH, value)
