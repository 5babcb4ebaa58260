# Copyright (c) 2022 Pieter Wuille
# Distributed under the MIT software license, see the accompanying
# file LICENSE or http://www.opensource.org/licenses/mit-license.php.

"""
Download MRT RIB dumps from RIPE RIS and RouteViews collectors.

Collectors are named in COLLECTORS; their URLs are strftime templates, so
dated archives resolve against the requested day. The RIPE RIS
"latest-bview" dumps are also reachable by collector number.
"""

import datetime
import os
import os.path
import shutil
import sys
import urllib.request
from typing import Iterable, List, Optional, Tuple

from bottleneck_errors import DumpError

RIPE_LATEST_URL = "https://data.ris.ripe.net/rrc%02i/latest-bview.gz"
RIPE_COLLECTOR_NUMBERS = [0, 1, 3, 4, 5, 6, 7, 10, 11, 12, 13, 14, 15, 16, 18, 19, 20, 21, 22, 23, 24, 25, 26]

COLLECTORS = {
    "routeviews.bz2": "http://archive.routeviews.org/bgpdata/%Y.%m/RIBS/rib.%Y%m%d.0000.bz2",
    "routeviews-3.bz2": "http://archive.routeviews.org/route-views3/bgpdata/%Y.%m/RIBS/rib.%Y%m%d.0000.bz2",
    "routeviews-4.bz2": "http://archive.routeviews.org/route-views4/bgpdata/%Y.%m/RIBS/rib.%Y%m%d.0000.bz2",
    "routeviews-amsix.bz2": "http://archive.routeviews.org/route-views.amsix/bgpdata/%Y.%m/RIBS/rib.%Y%m%d.0000.bz2",
    "routeviews-chicago.bz2": "http://archive.routeviews.org/route-views.chicago/bgpdata/%Y.%m/RIBS/rib.%Y%m%d.0000.bz2",
    "routeviews-eqix.bz2": "http://archive.routeviews.org/route-views.eqix/bgpdata/%Y.%m/RIBS/rib.%Y%m%d.0000.bz2",
    "routeviews-linx.bz2": "http://archive.routeviews.org/route-views.linx/bgpdata/%Y.%m/RIBS/rib.%Y%m%d.0000.bz2",
    "routeviews-napafrica.bz2": "http://archive.routeviews.org/route-views.napafrica/bgpdata/%Y.%m/RIBS/rib.%Y%m%d.0000.bz2",
    "routeviews-sydney.bz2": "http://archive.routeviews.org/route-views.sydney/bgpdata/%Y.%m/RIBS/rib.%Y%m%d.0000.bz2",
    "routeviews-saopaulo.bz2": "http://archive.routeviews.org/route-views.saopaulo/bgpdata/%Y.%m/RIBS/rib.%Y%m%d.0000.bz2",
    "routeviews-sg.bz2": "http://archive.routeviews.org/route-views.sg/bgpdata/%Y.%m/RIBS/rib.%Y%m%d.0000.bz2",
    "routeviews-wide.bz2": "http://archive.routeviews.org/route-views.wide/bgpdata/%Y.%m/RIBS/rib.%Y%m%d.0000.bz2",
}
for _num in RIPE_COLLECTOR_NUMBERS:
    COLLECTORS["ripe-%02i.gz" % _num] = "https://data.ris.ripe.net/rrc%02i/%%Y.%%m/bview.%%Y%%m%%d.0000.gz" % _num


def ripe_latest(number: int) -> Tuple[str, str]:
    """File name and URL of a RIPE RIS collector's latest dump."""
    return "rrc%02i-latest-bview.gz" % number, RIPE_LATEST_URL % number


def resolve(names: Iterable[str], numbers: Iterable[int], date: datetime.date) -> List[Tuple[str, str]]:
    """
    Turn collector names and RIPE collector numbers into (file name, URL)
    pairs. Without either, all RIPE RIS latest dumps are selected.
    """
    ret = []
    for name in names:
        if name not in COLLECTORS:
            raise KeyError("Unknown collector '%s'" % name)
        ret.append((name, date.strftime(COLLECTORS[name])))
    for number in numbers:
        ret.append(ripe_latest(number))
    if len(ret) == 0:
        ret = [ripe_latest(number) for number in RIPE_COLLECTOR_NUMBERS]
    return ret


def download_file(url: str, fullpath: str) -> None:
    """Fetch url into fullpath, via a .part file that is only renamed once complete."""
    if os.path.exists(fullpath + ".part"):
        os.remove(fullpath + ".part")
    try:
        with urllib.request.urlopen(url) as response, open(fullpath + ".part", "wb") as out_file:
            shutil.copyfileobj(response, out_file)
        os.rename(fullpath + ".part", fullpath)
    except OSError as err:
        raise DumpError(url, "download failed: %s" % err, err) from err


def download(targets: List[Tuple[str, str]], out_dir: str = "dumps",
             keep_going: bool = True) -> Tuple[List[str], List[DumpError]]:
    """
    Download every (file name, URL) target into out_dir. Files that already
    exist are kept. Returns the paths present afterwards and the failures.
    """
    try:
        os.makedirs(out_dir, exist_ok=True)
    except OSError as err:
        raise DumpError(out_dir, "cannot create directory: %s" % (err.strerror or err), err) from err
    done = []
    failures = []
    for num, (filename, url) in enumerate(targets, 1):
        fullpath = os.path.join(out_dir, filename)
        if os.path.exists(fullpath):
            print("[INFO] %i/%i %s already present" % (num, len(targets), filename), file=sys.stderr)
            done.append(fullpath)
            continue
        print("[INFO] %i/%i Downloading %s from %s" % (num, len(targets), filename, url), file=sys.stderr)
        try:
            download_file(url, fullpath)
        except DumpError as err:
            print("[ERROR] Failed to download %s: %s" % (filename, err.reason), file=sys.stderr)
            if not keep_going:
                raise
            failures.append(err)
            continue
        done.append(fullpath)
    return done, failures


def default_date(now: Optional[datetime.datetime] = None) -> datetime.date:
    """Archives appear with a delay, so default to a few days back."""
    if now is None:
        now = datetime.datetime.now()
    return (now - datetime.timedelta(seconds=300000)).date()
