# Copyright (c) 2022 Pieter Wuille
# Distributed under the MIT software license, see the accompanying
# file LICENSE or http://www.opensource.org/licenses/mit-license.php.

"""
Exception classes shared by the bottleneck tools.

Errors fall in a few groups, which differ in how far they propagate:
- MalformedAttributeError: one RIB entry could not be decoded. The entry is
  dropped and ingestion continues.
- PrefixParseError, PathLineError: textual input could not be parsed. These
  are raised to the caller of the parsing function.
- AnomalousPrefix: the paths for a prefix disagree on the origin AS. The
  prefix is left out of the result, and the anomaly is recorded.
- InvariantViolation: a state that valid input cannot produce.
- DumpError: a dump file or URL could not be read, decompressed or fetched.
"""

from typing import List, Optional


class BottleneckError(Exception):
    """Base class for all errors raised by the bottleneck tools."""


class MalformedAttributeError(BottleneckError, ValueError):
    """A raw attribute block could not be decoded into an AS path."""


class UnexpectedEndOfBuffer(MalformedAttributeError):
    def __init__(self, position: int, wanted: int = 1, available: int = 0) -> None:
        super().__init__("Unexpected end of buffer at offset %i (wanted %i byte%s, %i available)."
                         % (position, wanted, "" if wanted == 1 else "s", available))
        self.position = position
        self.wanted = wanted
        self.available = available


class UnknownAsValue(MalformedAttributeError):
    def __init__(self, value: int) -> None:
        super().__init__("Did not recognize AS path segment type %i, expected AS_SET (1) or AS_SEQUENCE (2)." % value)
        self.value = value


class UnknownTypeCode(MalformedAttributeError):
    def __init__(self, type_code: int) -> None:
        super().__init__("Did not recognize attribute type code %i, expected type code between 1 and 16." % type_code)
        self.type_code = type_code


class MissingPathAttribute(MalformedAttributeError):
    def __init__(self) -> None:
        super().__init__("Invalid RIB entry: no path attributes.")


class NoAsPathInAttributePath(MalformedAttributeError):
    def __init__(self) -> None:
        super().__init__("Invalid RIB entry: no AS_SEQUENCE in path attributes.")


class MultipleAsPaths(MalformedAttributeError):
    def __init__(self, count: int) -> None:
        super().__init__("Invalid RIB entry: %i AS_PATH attributes, expected one." % count)
        self.count = count


class PrefixParseError(BottleneckError, ValueError):
    """A textual prefix could not be parsed."""

    def __init__(self, message: str, text: str) -> None:
        super().__init__(message)
        self.text = text


class NoSlash(PrefixParseError):
    def __init__(self, text: str) -> None:
        super().__init__("Invalid IP and mask: %s. Missing '/', expected format 'IP/mask'." % text, text)


class AddrParse(PrefixParseError):
    def __init__(self, text: str) -> None:
        super().__init__("Invalid address: %s" % text, text)


class InvalidMask(PrefixParseError):
    def __init__(self, text: str, reason: str = "not a number") -> None:
        super().__init__("Invalid mask in %s: %s" % (text, reason), text)


class PathLineError(BottleneckError, ValueError):
    """A textual 'prefix|path' line could not be parsed."""

    def __init__(self, message: str, text: str) -> None:
        super().__init__(message)
        self.text = text


class NoPipe(PathLineError):
    def __init__(self, text: str) -> None:
        super().__init__("Invalid path line: %s. Missing '|', expected format 'IP/mask|ASN ASN ...'." % text, text)


class InvalidAsn(PathLineError):
    def __init__(self, text: str, asn: str) -> None:
        super().__init__("Invalid ASN '%s' in path line: %s" % (asn, text), text)
        self.asn = asn


class AnomalousPrefix(BottleneckError):
    """The observed paths toward a prefix claim more than one origin AS."""

    def __init__(self, prefix, origins: List[int]) -> None:
        super().__init__("Every prefix should belong to one AS, but %s is originated by %s."
                         % (prefix, ", ".join("AS%i" % asn for asn in origins)))
        self.prefix = prefix
        self.origins = origins

    def __eq__(self, other: object) -> bool:
        if isinstance(other, AnomalousPrefix):
            return self.prefix == other.prefix and self.origins == other.origins
        return NotImplemented

    def __hash__(self) -> int:
        return hash((self.prefix, tuple(self.origins)))


class InvariantViolation(BottleneckError):
    """Internal state that well-formed input can never produce."""


class EmptyAsPath(InvariantViolation):
    def __init__(self, prefix=None) -> None:
        super().__init__("Empty AS path%s." % ("" if prefix is None else " for %s" % prefix))
        self.prefix = prefix


class EmptyCommonSuffix(InvariantViolation):
    def __init__(self, prefix) -> None:
        super().__init__("No common AS left for %s." % prefix)
        self.prefix = prefix


class DumpError(BottleneckError):
    """A dump file or URL could not be read, decompressed or fetched."""

    def __init__(self, path: str, reason: str, cause: Optional[BaseException] = None) -> None:
        super().__init__("%s: %s" % (path, reason))
        self.path = path
        self.reason = reason
        self.cause = cause

    def __reduce__(self):
        # Sent back from ingestion worker processes; the cause may not pickle.
        return (DumpError, (self.path, self.reason))
