# Copyright (c) 2022 Pieter Wuille
# Distributed under the MIT software license, see the accompanying
# file LICENSE or http://www.opensource.org/licenses/mit-license.php.

import argparse
import datetime
import os
import os.path
import sys

import bottleneck
import download_dumps
from bottleneck_errors import DumpError


def expand_inputs(inputs):
    """Replace directories by the (sorted, non-hidden) files in them."""
    files = []
    for path in inputs:
        if os.path.isdir(path):
            for name in sorted(os.listdir(path)):
                fullpath = os.path.join(path, name)
                if not name.startswith('.') and not name.endswith('.part') and os.path.isfile(fullpath):
                    files.append(fullpath)
        else:
            files.append(path)
    return files


def parse_date(text):
    try:
        return datetime.datetime.strptime(text, "%Y%m%d").date()
    except ValueError:
        raise argparse.ArgumentTypeError("invalid date '%s', expected YYYYMMDD" % text)


def parse_numbers(text):
    try:
        return [int(num) for num in text.split(',') if len(num) > 0]
    except ValueError:
        raise argparse.ArgumentTypeError("invalid collector number list '%s'" % text)


def run_download(args):
    date = args.date if args.date is not None else download_dumps.default_date()
    try:
        targets = download_dumps.resolve(args.collectors, args.numbers or [], date)
    except KeyError as err:
        sys.exit("%s; known collectors: %s" % (err.args[0], ", ".join(sorted(download_dumps.COLLECTORS))))
    try:
        done, failures = download_dumps.download(targets, args.out, keep_going=not args.fail_fast)
    except DumpError as err:
        sys.exit("%s" % err)
    print("[INFO] %i of %i dumps present in %s" % (len(done), len(targets), args.out), file=sys.stderr)
    if failures:
        sys.exit("Failed to download: %s" % ", ".join(err.path for err in failures))


def run_find_bottleneck(args):
    inputs = list(args.inputs)
    if args.dir is not None:
        if not os.path.isdir(args.dir):
            sys.exit("Input directory '%s' does not exist." % args.dir)
        inputs.append(args.dir)
    if len(inputs) == 0:
        sys.exit("No input files given.")
    if args.out is not None and not os.path.isdir(args.out):
        sys.exit("Output directory '%s' does not exist." % args.out)
    files = expand_inputs(inputs)
    if len(files) == 0:
        sys.exit("No input files found in %s." % ", ".join(inputs))
    try:
        result, failures = bottleneck.run(files, fmt=args.format, strict=args.strict_type_codes,
                                          verbose=args.verbose, shard_bits=args.shard_bits,
                                          keep_going=not args.fail_fast, jobs=args.jobs)
        written = bottleneck.write_report(result.bottlenecks, args.out)
    except DumpError as err:
        sys.exit("%s" % err)
    if written is not None:
        print("[INFO] Wrote %s" % written, file=sys.stderr)
    if failures:
        sys.exit("Failed to process: %s" % "; ".join(str(err) for err in failures))


def main(argv=None):
    parser = argparse.ArgumentParser(description="Find the bottleneck AS of every prefix in MRT routing table dumps.")
    subparsers = parser.add_subparsers(title="valid subcommands", dest="subcommand")

    parser_download = subparsers.add_parser("download", help="download MRT RIB dumps from route collectors")
    parser_download.add_argument('-n', '--ripe-collector-number', dest="numbers", type=parse_numbers, default=None,
                                 help="comma separated RIPE RIS collector numbers whose latest dump to fetch")
    parser_download.add_argument('-o', '--out', dest="out", default="dumps",
                                 help="directory to write dumps to; default is 'dumps'")
    parser_download.add_argument('--date', dest="date", type=parse_date, default=None,
                                 help="day (YYYYMMDD) for dated collector archives; default is a few days ago")
    parser_download.add_argument('--fail-fast', dest="fail_fast", default=False, action="store_true",
                                 help="stop at the first failed download")
    parser_download.add_argument('collectors', nargs='*',
                                 help="named collectors to fetch; default is all RIPE RIS latest dumps")

    parser_find = subparsers.add_parser("find-bottleneck", aliases=["bottleneck"],
                                        help="compute the bottleneck AS for every prefix")
    parser_find.add_argument('-d', '--dir', dest="dir", default=None,
                             help="directory of dump files to read")
    parser_find.add_argument('-o', '--out', dest="out", default=None,
                             help="directory to write bottleneck.<time>.txt to; default is stdout")
    parser_find.add_argument('-f', '--format', dest="format", choices=[bottleneck.FORMAT_MRT, bottleneck.FORMAT_PATHS],
                             default=bottleneck.FORMAT_MRT,
                             help="input format: MRT dumps or 'prefix|path' text lines; default is mrt")
    parser_find.add_argument('-s', '--shard-bits', dest="shard_bits", type=int, choices=range(0, 9), default=0,
                             metavar="N", help="process the address space in 2^N pieces to bound memory use")
    parser_find.add_argument('-j', '--jobs', dest="jobs", type=int, default=1,
                             help="number of processes reading input files in parallel")
    parser_find.add_argument('--strict-type-codes', dest="strict_type_codes", default=False, action="store_true",
                             help="reject RIB entries with unknown attribute type codes instead of skipping them")
    parser_find.add_argument('--fail-fast', dest="fail_fast", default=False, action="store_true",
                             help="stop at the first input file that cannot be read")
    parser_find.add_argument('-v', '--verbose', dest="verbose", default=False, action="store_true",
                             help="report every malformed RIB entry")
    parser_find.add_argument('inputs', nargs='*',
                             help="dump files or directories of dump files")

    args = parser.parse_args(argv)
    if args.subcommand is None:
        parser.print_help()
        sys.exit("No command provided.")
    elif args.subcommand == "download":
        run_download(args)
    elif args.subcommand in ("find-bottleneck", "bottleneck"):
        if args.jobs < 1:
            parser_find.error("--jobs must be at least 1")
        run_find_bottleneck(args)


if __name__ == '__main__':
    main()
