# Copyright (c) 2022 Pieter Wuille
# Distributed under the MIT software license, see the accompanying
# file LICENSE or http://www.opensource.org/licenses/mit-license.php.

import bz2
import contextlib
import gzip
import io
import os
import struct
import tempfile
import unittest

import mrtdump
from aspath import encode_as_path, encode_attribute
from bottleneck import PathCollector
from bottleneck_errors import DumpError
from routing_prefix import Prefix

ORIGIN = encode_attribute(1, bytes([0]))


def mrt_record(mrt_type, subtype, body, timestamp=1580227200):
    return struct.pack("!IHHI", timestamp, mrt_type, subtype, len(body)) + body


def rib_record(prefix, entries, sequence=0):
    """Encode a TABLE_DUMP_V2 RIB_IPV[46]_UNICAST record for prefix with (peer, attributes) entries."""
    nbytes = (prefix.mask + 7) // 8
    body = struct.pack("!IB", sequence, prefix.mask) + prefix.ip.packed[:nbytes] + struct.pack("!H", len(entries))
    for peer_index, attrs in entries:
        body += struct.pack("!HIH", peer_index, 1580220000, len(attrs)) + attrs
    subtype = mrtdump.SUBTYPE_RIB_IPV6_UNICAST if prefix.version == 6 else mrtdump.SUBTYPE_RIB_IPV4_UNICAST
    return mrt_record(mrtdump.TYPE_TABLE_DUMP_V2, subtype, body)


def sample_dump():
    """A small dump: a peer index table, RIB records, and records of other kinds."""
    records = [mrt_record(mrtdump.TYPE_TABLE_DUMP_V2, 1, bytes(16))]
    records.append(rib_record(Prefix.from_text("1.0.139.0/24"), [
        (0, ORIGIN + encode_as_path([2497, 38040, 23969])),
        (1, ORIGIN + encode_as_path([25152, 6939, 4766, 38040, 23969])),
        (2, ORIGIN + encode_as_path([4777, 6939, 4766, 38040, 38040, 23969])),
    ], sequence=1))
    records.append(rib_record(Prefix.from_text("1.0.6.0/24"), [
        (0, ORIGIN + encode_as_path([2497, 4826, 38803, 56203])),
        (1, b""),
    ], sequence=2))
    # A BGP4MP message and a multicast RIB, neither of which are read.
    records.append(mrt_record(16, 4, bytes(20)))
    records.append(mrt_record(mrtdump.TYPE_TABLE_DUMP_V2, 3, bytes(9)))
    records.append(rib_record(Prefix.from_text("2001:2f8:1008::/48"), [
        (3, ORIGIN + encode_as_path([174, 2516])),
    ], sequence=3))
    return b"".join(records)


def quiet():
    return contextlib.redirect_stderr(io.StringIO())


class TestReadRibRecords(unittest.TestCase):
    """Unit tests for reading MRT dumps."""

    def setUp(self) -> None:
        self.tmpdir = tempfile.TemporaryDirectory()
        self.addCleanup(self.tmpdir.cleanup)

    def write(self, name, data):
        fullpath = os.path.join(self.tmpdir.name, name)
        with open(fullpath, "wb") as f:
            f.write(data)
        return fullpath

    def check_sample(self, path) -> None:
        records = list(mrtdump.read_rib_records(path))
        self.assertEqual([str(record.prefix) for record in records],
                         ["1.0.139.0/24", "1.0.6.0/24", "2001:2f8:1008::/48"])
        self.assertEqual([peer for peer, _ in records[0].entries], [0, 1, 2])
        self.assertEqual(records[1].entries[1], (1, b""))
        self.assertEqual(records[2].entries, [(3, ORIGIN + encode_as_path([174, 2516]))])

    def test_plain(self) -> None:
        self.check_sample(self.write("dump", sample_dump()))

    def test_gzip(self) -> None:
        self.check_sample(self.write("dump.gz", gzip.compress(sample_dump())))

    def test_bzip2(self) -> None:
        self.check_sample(self.write("dump.bz2", bz2.compress(sample_dump())))

    def test_empty(self) -> None:
        self.assertEqual(list(mrtdump.read_rib_records(self.write("empty", b""))), [])

    def test_truncated_tail(self) -> None:
        """A partially written last record ends the dump with a warning."""
        data = sample_dump()
        for cut in (1, 5, 13):
            path = self.write("dump", data[:-cut])
            stderr = io.StringIO()
            with contextlib.redirect_stderr(stderr):
                records = list(mrtdump.read_rib_records(path))
            self.assertEqual(len(records), 2)
            self.assertIn("[WARNING]", stderr.getvalue())

    def test_truncated_gzip(self) -> None:
        data = b"".join(rib_record(Prefix.from_text("10.%i.0.0/16" % i), [(0, ORIGIN + encode_as_path([174, i + 1]))])
                        for i in range(200))
        path = self.write("dump.gz", gzip.compress(data)[:-12])
        with quiet():
            records = list(mrtdump.read_rib_records(path))
        self.assertLessEqual(len(records), 200)

    def test_malformed_record(self) -> None:
        body = struct.pack("!IB", 0, 24) + bytes([1, 0, 6]) + struct.pack("!H", 2) + struct.pack("!HIH", 0, 0, 50)
        path = self.write("dump", sample_dump() + mrt_record(mrtdump.TYPE_TABLE_DUMP_V2, 2, body))
        with quiet():
            records = list(mrtdump.read_rib_records(path))
        self.assertEqual(len(records), 3)

    def test_malformed_record_in_middle(self) -> None:
        """A complete but malformed record is skipped, and the records after it are still read."""
        good = [rib_record(Prefix.from_text("10.%i.0.0/16" % i), [(0, ORIGIN + encode_as_path([174, i + 1]))])
                for i in range(51)]
        bad = mrt_record(mrtdump.TYPE_TABLE_DUMP_V2, mrtdump.SUBTYPE_RIB_IPV4_UNICAST,
                         struct.pack("!IB", 0, 40) + bytes(5) + struct.pack("!H", 0))
        path = self.write("dump", good[0] + bad + b"".join(good[1:]))
        stderr = io.StringIO()
        with contextlib.redirect_stderr(stderr):
            records = list(mrtdump.read_rib_records(path))
        self.assertEqual(len(records), 51)
        self.assertEqual(str(records[-1].prefix), "10.50.0.0/16")
        self.assertEqual(stderr.getvalue().count("[WARNING]"), 1)

    def test_missing(self) -> None:
        with self.assertRaises(DumpError) as ctx:
            list(mrtdump.read_rib_records(os.path.join(self.tmpdir.name, "missing")))
        self.assertTrue(ctx.exception.path.endswith("missing"))

    def test_corrupt_gzip(self) -> None:
        path = self.write("dump.gz", b"\x1f\x8bgarbage that is not deflate data")
        with self.assertRaises(DumpError):
            list(mrtdump.read_rib_records(path))

    def test_collect_dump(self) -> None:
        collector = PathCollector()
        with quiet():
            collector.add_dump(self.write("dump.gz", gzip.compress(sample_dump())))
        self.assertEqual(collector.paths(Prefix.from_text("1.0.139.0/24")), {
            (2497, 38040, 23969), (25152, 6939, 4766, 38040, 23969), (4777, 6939, 4766, 38040, 23969)})
        self.assertEqual(collector.entries, 6)
        self.assertEqual(collector.decoded, 5)
        self.assertEqual(collector.rejected["MissingPathAttribute"], 1)
        self.assertEqual(len(collector), 3)


if __name__ == '__main__':
    unittest.main()
