# Copyright (c) 2022 Pieter Wuille
# Distributed under the MIT software license, see the accompanying
# file LICENSE or http://www.opensource.org/licenses/mit-license.php.

"""
Bottleneck AS computation.

For every prefix, all distinct AS paths observed toward it are collected.
The bottleneck AS of the prefix is then the AS farthest away from the
origin that still lies on every one of those paths: if all paths toward
1.0.139.0/24 end in "... 38040 23969", but differ before 38040, the
bottleneck is AS38040.

The work is split in two phases:
- Ingestion: PathCollector decodes RIB entries (or textual path lines) and
  accumulates a set of distinct paths per prefix. Collectors for separate
  input files can be built independently and merged.
- Reduction: find_bottlenecks() reduces each prefix's complete path set to a
  single ASN. It must only run once all paths for a prefix are known.
"""

import collections
import io
import multiprocessing
import os
import re
import sys
import time
from typing import Dict, Iterable, Iterator, List, Optional, Sequence, Set, Tuple

import mrtdump
from aspath import AsPathParser, dedup
from bottleneck_errors import (
    AnomalousPrefix,
    DumpError,
    EmptyAsPath,
    EmptyCommonSuffix,
    InvalidAsn,
    MalformedAttributeError,
    NoPipe,
    PathLineError,
)
from routing_prefix import Prefix

PROGRESS_INTERVAL = 1000000
MAX_ASN = 0xffffffff
AS_SET_PATTERN = re.compile(r"\{[^}]*\}")
SPACE_PATTERN = re.compile(r"[ ,]+")

FORMAT_MRT = "mrt"
FORMAT_PATHS = "paths"


class Shard:
    """
    The part of the address space whose first address byte starts with the
    given top bits. Shard(0, 0) covers everything.
    """

    def __init__(self, bits: int = 0, index: int = 0) -> None:
        assert 0 <= bits <= 8
        assert 0 <= index < (1 << bits)
        self.bits = bits
        self.index = index

    def __contains__(self, prefix: Prefix) -> bool:
        return (prefix.first_octet >> (8 - self.bits)) == self.index

    def __str__(self) -> str:
        if self.bits == 0:
            return "all prefixes"
        low = self.index << (8 - self.bits)
        high = low + (1 << (8 - self.bits)) - 1
        return "first octet %i-%i" % (low, high)

    @staticmethod
    def all(bits: int) -> List["Shard"]:
        return [Shard(bits, index) for index in range(1 << bits)]


def parse_path_line(line: str) -> Tuple[Prefix, List[int]]:
    """
    Parse a "[ip]/[mask]|[asn] [asn] ..." line into a prefix and a
    deduplicated AS path. AS_SETs, written as "{asn,asn}", are dropped.
    """
    prefix_str, sep, path_str = line.strip().partition('|')
    if not sep:
        raise NoPipe(line.strip())
    prefix = Prefix.from_text(prefix_str)
    path_str = AS_SET_PATTERN.sub(' ', path_str.split('|')[0])
    path = []
    for asn in SPACE_PATTERN.split(path_str.strip()):
        if len(asn) == 0:
            continue
        if any(c < '0' or c > '9' for c in asn) or int(asn) > MAX_ASN:
            raise InvalidAsn(line.strip(), asn)
        path.append(int(asn))
    if len(path) == 0:
        raise PathLineError("Empty AS path in path line: %s" % line.strip(), line.strip())
    return prefix, dedup(path)


class PathCollector:
    """
    Accumulates, per prefix, the set of distinct AS paths seen.

    Paths are stored as tuples in the order they were announced: nearest to
    the collector first, origin AS last. Adjacent repeats are removed before
    storing. Only prefixes inside shard are kept.
    """

    def __init__(self, strict: bool = False, verbose: bool = False, shard: Optional[Shard] = None) -> None:
        self._paths: Dict[Prefix, Set[Tuple[int, ...]]] = {}
        self.strict = strict
        self.verbose = verbose
        self.shard = Shard() if shard is None else shard
        self.entries = 0
        self.decoded = 0
        self.as_sets = 0
        self.rejected: collections.Counter = collections.Counter()

    def __len__(self) -> int:
        return len(self._paths)

    def __contains__(self, prefix: Prefix) -> bool:
        return prefix in self._paths

    def paths(self, prefix: Prefix) -> Set[Tuple[int, ...]]:
        return set(self._paths.get(prefix, ()))

    def path_count(self) -> int:
        return sum(len(paths) for paths in self._paths.values())

    def add_path(self, prefix: Prefix, path: Sequence[int]) -> None:
        """Add an already decoded path for prefix."""
        if len(path) == 0:
            raise EmptyAsPath(prefix)
        if prefix not in self.shard:
            return
        self._paths.setdefault(prefix, set()).add(tuple(dedup(list(path))))

    def add_entry(self, prefix: Prefix, raw: bytes) -> bool:
        """
        Decode one RIB entry's raw attributes and add its path. A malformed
        entry is reported and dropped. Returns whether a path was added.
        """
        self.entries += 1
        if self.entries % PROGRESS_INTERVAL == 0:
            self.report_progress()
        parser = AsPathParser(raw, self.strict)
        try:
            path = parser.parse()
        except MalformedAttributeError as err:
            self.rejected[type(err).__name__] += 1
            if self.verbose:
                print("[WARNING] Skipping RIB entry for %s: %s" % (prefix, err), file=sys.stderr)
            return False
        finally:
            self.as_sets += parser.as_sets
        self.decoded += 1
        self.add_path(prefix, path)
        return True

    def add_record(self, record: mrtdump.RibRecord) -> None:
        if record.prefix not in self.shard:
            return
        for _, raw in record.entries:
            self.add_entry(record.prefix, raw)

    def add_dump(self, path: str) -> None:
        """Add all RIB entries from an MRT dump file. Raises DumpError."""
        rejected = sum(self.rejected.values())
        for record in mrtdump.read_rib_records(path):
            self.add_record(record)
        rejected = sum(self.rejected.values()) - rejected
        if rejected:
            print("[WARNING] %s: skipped %i malformed RIB entries" % (path, rejected), file=sys.stderr)

    def add_path_file(self, path: str) -> None:
        """Add all "[prefix]|[path]" lines from a text file. Raises DumpError."""
        try:
            with io.TextIOWrapper(mrtdump.open_dump(path), encoding="utf-8") as f:
                for linenum, line in enumerate(f, 1):
                    line = line.split('#')[0].strip()
                    if len(line) == 0:
                        continue
                    self.entries += 1
                    try:
                        prefix, as_path = parse_path_line(line)
                    except (PathLineError, ValueError) as err:
                        self.rejected[type(err).__name__] += 1
                        print("[WARNING] %s:%i: %s" % (path, linenum, err), file=sys.stderr)
                        continue
                    self.decoded += 1
                    self.add_path(prefix, as_path)
        except (OSError, EOFError, UnicodeError) as err:
            raise DumpError(path, "cannot be read: %s" % err, err) from err

    def add_file(self, path: str, fmt: str = FORMAT_MRT) -> None:
        if fmt == FORMAT_PATHS:
            self.add_path_file(path)
        else:
            self.add_dump(path)

    def merge(self, other: "PathCollector") -> None:
        """Add all paths and counters from another collector."""
        for prefix, paths in other._paths.items():
            if prefix in self.shard:
                self._paths.setdefault(prefix, set()).update(paths)
        self.entries += other.entries
        self.decoded += other.decoded
        self.as_sets += other.as_sets
        self.rejected.update(other.rejected)

    def take(self) -> Dict[Prefix, Set[Tuple[int, ...]]]:
        """Hand over the collected paths, leaving this collector empty."""
        ret = self._paths
        self._paths = {}
        return ret

    def report_progress(self) -> None:
        print("[INFO] %i entries, %i decoded, %i rejected, %i AS_SETs skipped; %i prefixes"
              % (self.entries, self.decoded, sum(self.rejected.values()), self.as_sets, len(self._paths)),
              file=sys.stderr)


def common_suffix(prefix: Prefix, paths: Iterable[Sequence[int]]) -> List[int]:
    """
    Compute the longest run of ASNs, starting at the origin, that all paths
    toward prefix agree on. The result is origin first.

    Raises AnomalousPrefix if the paths do not share the same origin AS.
    """
    candidate: Optional[List[int]] = None
    origins = set()
    for path in paths:
        if len(path) == 0:
            raise EmptyAsPath(prefix)
        rev_path = list(reversed(path))
        origins.add(rev_path[0])
        if candidate is None:
            candidate = rev_path
            continue
        if len(origins) > 1:
            continue
        common_len = 1
        while common_len < len(candidate) and common_len < len(rev_path):
            if candidate[common_len] != rev_path[common_len]:
                break
            common_len += 1
        del candidate[common_len:]
    if candidate is None:
        raise EmptyAsPath(prefix)
    if len(origins) > 1:
        raise AnomalousPrefix(prefix, sorted(origins))
    return candidate


class BottleneckResult:
    """The bottleneck ASN per prefix, plus the prefixes left out as anomalous."""

    def __init__(self) -> None:
        self.bottlenecks: Dict[Prefix, int] = {}
        self.anomalies: List[AnomalousPrefix] = []

    def __len__(self) -> int:
        return len(self.bottlenecks)

    def update(self, other: "BottleneckResult") -> None:
        self.bottlenecks.update(other.bottlenecks)
        self.anomalies.extend(other.anomalies)


def find_bottlenecks(path_sets: Dict[Prefix, Iterable[Sequence[int]]]) -> BottleneckResult:
    """Reduce every prefix's complete set of paths to its bottleneck ASN."""
    ret = BottleneckResult()
    for prefix, paths in path_sets.items():
        try:
            suffix = common_suffix(prefix, paths)
        except AnomalousPrefix as err:
            print("[WARNING] %s" % err, file=sys.stderr)
            ret.anomalies.append(err)
            continue
        if len(suffix) == 0:
            raise EmptyCommonSuffix(prefix)
        ret.bottlenecks[prefix] = suffix[-1]
    return ret


def _collect_file(args: Tuple[str, str, bool, bool, Shard]) -> Tuple[PathCollector, Optional[DumpError]]:
    """Worker body for parallel ingestion: one file into a fresh collector."""
    path, fmt, strict, verbose, shard = args
    collector = PathCollector(strict=strict, verbose=verbose, shard=shard)
    try:
        collector.add_file(path, fmt)
    except DumpError as err:
        return collector, err
    return collector, None


def collect_paths(files: Sequence[str], fmt: str = FORMAT_MRT, strict: bool = False, verbose: bool = False,
                  shard: Optional[Shard] = None, keep_going: bool = True,
                  jobs: int = 1) -> Tuple[PathCollector, List[DumpError]]:
    """
    Ingest all files into one collector. Returns the collector and the list of
    files that failed. Unless keep_going is set, the first failure is raised.
    """
    collector = PathCollector(strict=strict, verbose=verbose, shard=shard)
    failures: List[DumpError] = []
    work = [(path, fmt, strict, verbose, collector.shard) for path in files]
    if jobs > 1 and len(files) > 1:
        for path in files:
            print("[INFO] Reading %s (%s)" % (path, collector.shard), file=sys.stderr)
        with multiprocessing.Pool(min(jobs, len(files))) as pool:
            for partial, err in pool.imap(_collect_file, work):
                if err is not None:
                    print("[ERROR] %s" % err, file=sys.stderr)
                    if not keep_going:
                        pool.terminate()
                        raise err
                    failures.append(err)
                collector.merge(partial)
        return collector, failures
    for path in files:
        print("[INFO] Reading %s (%s)" % (path, collector.shard), file=sys.stderr)
        try:
            collector.add_file(path, fmt)
        except DumpError as err:
            print("[ERROR] %s" % err, file=sys.stderr)
            if not keep_going:
                raise
            failures.append(err)
    return collector, failures


def run(files: Sequence[str], fmt: str = FORMAT_MRT, strict: bool = False, verbose: bool = False,
        shard_bits: int = 0, keep_going: bool = True, jobs: int = 1) -> Tuple[BottleneckResult, List[DumpError]]:
    """
    Compute the bottleneck ASN for every prefix in files.

    With shard_bits > 0, the address space is processed in 2^shard_bits
    pieces, re-reading the inputs for each, so that only one piece's paths
    are held in memory at a time. The result does not depend on shard_bits.
    """
    result = BottleneckResult()
    failures: List[DumpError] = []
    remaining = list(files)
    for shard in Shard.all(shard_bits):
        collector, failed = collect_paths(remaining, fmt=fmt, strict=strict, verbose=verbose, shard=shard,
                                          keep_going=keep_going, jobs=jobs)
        if failed:
            # Files that failed once are not retried for later shards.
            failures.extend(failed)
            failed_paths = set(err.path for err in failed)
            remaining = [path for path in remaining if path not in failed_paths]
        collector.report_progress()
        result.update(find_bottlenecks(collector.take()))
    print("[INFO] %i prefixes with a bottleneck, %i anomalous" % (len(result), len(result.anomalies)), file=sys.stderr)
    return result, failures


def format_report(bottlenecks: Dict[Prefix, int]) -> Iterator[str]:
    """Yield the report lines, "[ip]/[mask]|[asn]", sorted by prefix."""
    for prefix in sorted(bottlenecks, key=Prefix.sort_key):
        yield "%s|%i" % (prefix, bottlenecks[prefix])


def write_report(bottlenecks: Dict[Prefix, int], out_dir: Optional[str] = None,
                 now: Optional[float] = None) -> Optional[str]:
    """
    Write the report to stdout, or to bottleneck.[unix time].txt inside
    out_dir. Returns the file name written, if any.
    """
    if out_dir is None:
        for line in format_report(bottlenecks):
            print(line)
        return None
    if now is None:
        now = time.time()
    fullpath = os.path.join(out_dir, "bottleneck.%i.txt" % int(now))
    try:
        with open(fullpath + ".part", "w") as out:
            for line in format_report(bottlenecks):
                out.write(line + "\n")
        os.replace(fullpath + ".part", fullpath)
    except OSError as err:
        if os.path.exists(fullpath + ".part"):
            os.remove(fullpath + ".part")
        raise DumpError(fullpath, "cannot be written: %s" % (err.strerror or err), err) from err
    return fullpath


def read_report(lines: Iterable[str]) -> Dict[Prefix, int]:
    """Parse report lines back into a prefix to ASN map."""
    ret = {}
    for line in lines:
        line = line.strip()
        if len(line) == 0:
            continue
        prefix_str, sep, asn = line.partition('|')
        if not sep:
            raise NoPipe(line)
        if len(asn) == 0 or any(c < '0' or c > '9' for c in asn):
            raise InvalidAsn(line, asn)
        ret[Prefix.from_text(prefix_str)] = int(asn)
    return ret
