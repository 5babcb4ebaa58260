# Copyright (c) 2022 Pieter Wuille
# Distributed under the MIT software license, see the accompanying
# file LICENSE or http://www.opensource.org/licenses/mit-license.php.

"""
Reader for MRT routing table dumps (RFC 6396), as published by RIPE RIS and
RouteViews. Only TABLE_DUMP_V2 RIB_IPV4_UNICAST and RIB_IPV6_UNICAST records
are returned; every other record is skipped.

Dumps may be plain, gzip or bzip2 compressed. A truncated or corrupt tail
(for example from a partial download) ends the iteration with a warning
rather than an error. A complete record with a malformed body is skipped
with a warning, and reading goes on with the next record.
"""

import bz2
import gzip
import struct
import sys
import zlib
from typing import BinaryIO, Iterator, List, NamedTuple, Tuple

from bottleneck_errors import DumpError
from routing_prefix import Prefix

MRT_HEADER = struct.Struct("!IHHI")
RIB_HEADER = struct.Struct("!IB")
RIB_ENTRY_HEADER = struct.Struct("!HIH")

TYPE_TABLE_DUMP_V2 = 13
SUBTYPE_RIB_IPV4_UNICAST = 2
SUBTYPE_RIB_IPV6_UNICAST = 4

GZIP_MAGIC = b"\x1f\x8b"
BZIP2_MAGIC = b"BZh"

# Errors that mean the (compressed) stream is unreadable from this point on.
STREAM_ERRORS = (OSError, EOFError, zlib.error)


class RibRecord(NamedTuple):
    """One destination prefix, with (peer index, raw attribute block) per reporting peer."""
    prefix: Prefix
    entries: List[Tuple[int, bytes]]


def open_dump(path: str) -> BinaryIO:
    """Open a dump file for binary reading, decompressing it if needed."""
    try:
        with open(path, "rb") as f:
            magic = f.read(3)
        if magic.startswith(GZIP_MAGIC):
            return gzip.open(path, "rb")
        if magic.startswith(BZIP2_MAGIC):
            return bz2.open(path, "rb")
        return open(path, "rb")
    except OSError as err:
        raise DumpError(path, "cannot be opened: %s" % (err.strerror or err), err) from err


def parse_rib(body: bytes, is_v6: bool) -> RibRecord:
    """Parse the body of a RIB_IPV4_UNICAST or RIB_IPV6_UNICAST record."""
    _, prefix_len = RIB_HEADER.unpack_from(body, 0)
    offset = RIB_HEADER.size
    nbytes = (prefix_len + 7) // 8
    if offset + nbytes > len(body):
        raise struct.error("prefix runs past end of record")
    prefix = Prefix.from_binary(body[offset:offset + nbytes], prefix_len, is_v6)
    offset += nbytes
    (count,) = struct.unpack_from("!H", body, offset)
    offset += 2
    entries = []
    for _ in range(count):
        peer_index, _, attr_len = RIB_ENTRY_HEADER.unpack_from(body, offset)
        offset += RIB_ENTRY_HEADER.size
        if offset + attr_len > len(body):
            raise struct.error("attributes run past end of record")
        entries.append((peer_index, body[offset:offset + attr_len]))
        offset += attr_len
    return RibRecord(prefix, entries)


def read_rib_records(path: str) -> Iterator[RibRecord]:
    """
    Iterate over the unicast RIB records in the dump at path.

    Raises DumpError if the file cannot be opened, or if not even the first
    record can be read from it.
    """
    with open_dump(path) as f:
        records = 0
        while True:
            try:
                header = f.read(MRT_HEADER.size)
                if len(header) == 0:
                    return
                if len(header) < MRT_HEADER.size:
                    print("[WARNING] %s: truncated record header after %i records" % (path, records), file=sys.stderr)
                    return
                _, mrt_type, subtype, length = MRT_HEADER.unpack(header)
                body = f.read(length)
            except STREAM_ERRORS as err:
                if records == 0:
                    raise DumpError(path, "cannot be read: %s" % err, err) from err
                print("[WARNING] %s: unreadable data after %i records: %s" % (path, records, err), file=sys.stderr)
                return
            if len(body) < length:
                print("[WARNING] %s: truncated record after %i records" % (path, records), file=sys.stderr)
                return
            records += 1
            if mrt_type != TYPE_TABLE_DUMP_V2:
                continue
            if subtype not in (SUBTYPE_RIB_IPV4_UNICAST, SUBTYPE_RIB_IPV6_UNICAST):
                continue
            try:
                record = parse_rib(body, subtype == SUBTYPE_RIB_IPV6_UNICAST)
            except (struct.error, ValueError) as err:
                print("[WARNING] %s: skipping malformed RIB record %i: %s" % (path, records, err), file=sys.stderr)
                continue
            yield record
