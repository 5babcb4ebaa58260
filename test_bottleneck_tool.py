# Copyright (c) 2022 Pieter Wuille
# Distributed under the MIT software license, see the accompanying
# file LICENSE or http://www.opensource.org/licenses/mit-license.php.

import contextlib
import gzip
import io
import os
import tempfile
import unittest

import bottleneck_tool
from test_mrtdump import sample_dump


class TestBottleneckTool(unittest.TestCase):
    """Tests for the command line interface."""

    def setUp(self) -> None:
        self.tmpdir = tempfile.TemporaryDirectory()
        self.addCleanup(self.tmpdir.cleanup)
        self.dumps = os.path.join(self.tmpdir.name, "dumps")
        self.out = os.path.join(self.tmpdir.name, "out")
        os.mkdir(self.dumps)
        os.mkdir(self.out)
        with open(os.path.join(self.dumps, "rrc00-latest-bview.gz"), "wb") as f:
            f.write(gzip.compress(sample_dump()))
        with open(os.path.join(self.dumps, "rrc01-latest-bview.gz.part"), "wb") as f:
            f.write(b"incomplete")

    def main(self, *argv):
        stdout = io.StringIO()
        with contextlib.redirect_stderr(io.StringIO()), contextlib.redirect_stdout(stdout):
            bottleneck_tool.main(list(argv))
        return stdout.getvalue()

    def report(self):
        names = os.listdir(self.out)
        self.assertEqual(len(names), 1)
        self.assertTrue(names[0].startswith("bottleneck.") and names[0].endswith(".txt"))
        with open(os.path.join(self.out, names[0])) as f:
            return f.read()

    def test_find_bottleneck_to_stdout(self) -> None:
        output = self.main("find-bottleneck", self.dumps)
        self.assertEqual(output, "1.0.6.0/24|2497\n1.0.139.0/24|38040\n2001:2f8:1008::/48|174\n")

    def test_find_bottleneck_to_dir(self) -> None:
        self.main("bottleneck", "-d", self.dumps, "-o", self.out, "--shard-bits", "2")
        self.assertEqual(self.report(), "1.0.6.0/24|2497\n1.0.139.0/24|38040\n2001:2f8:1008::/48|174\n")

    def test_missing_input_keeps_going(self) -> None:
        """A missing file is reported with a nonzero exit, but the others are still processed."""
        with self.assertRaises(SystemExit) as ctx:
            self.main("find-bottleneck", "-o", self.out, os.path.join(self.tmpdir.name, "missing.gz"), self.dumps)
        self.assertIn("missing.gz", str(ctx.exception.code))
        self.assertIn("1.0.139.0/24|38040\n", self.report())

    def test_missing_input_fail_fast(self) -> None:
        with self.assertRaises(SystemExit) as ctx:
            self.main("find-bottleneck", "--fail-fast", "-o", self.out,
                      os.path.join(self.tmpdir.name, "missing.gz"), self.dumps)
        self.assertNotEqual(ctx.exception.code, 0)
        self.assertEqual(os.listdir(self.out), [])

    def test_bad_arguments(self) -> None:
        for argv in [[], ["find-bottleneck"], ["find-bottleneck", "-d", os.path.join(self.tmpdir.name, "nope")],
                     ["find-bottleneck", "-o", os.path.join(self.tmpdir.name, "nope"), self.dumps],
                     ["find-bottleneck", "--jobs", "0", self.dumps],
                     ["find-bottleneck", "--shard-bits", "9", self.dumps],
                     ["download", "--date", "yesterday"],
                     ["download", "-o", self.out, "no-such-collector"]]:
            with self.assertRaises(SystemExit) as ctx:
                self.main(*argv)
            self.assertNotEqual(ctx.exception.code, 0)


if __name__ == '__main__':
    unittest.main()
