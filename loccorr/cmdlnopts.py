"""Command-line options."""

from __future__ import annotations

import argparse
from dataclasses import asdict, dataclass
from typing import List, Optional, Sequence

from .config import (
    DEFAULT_INTENSTHRES,
    DEFAULT_MAXAREA,
    DEFAULT_MINAREA,
    DEFAULT_NAVERAGE,
    DEFAULT_PUSIPORT,
    DEFAULT_THROWPART,
    EXPOS_MAX,
    EXPOS_MIN,
)
from .improc import PUSIROBO_POSTPROC

DEFAULT_PIDFILE = "/tmp/loccorr.pid"
DEFAULT_CONFFILE = "./loccorr.conf"
DEFAULT_OUTPJPEG = "./outpWcrosses.jpg"
DEFAULT_IOPORT = 12345
DEFAULT_EROSIONS = 2
DEFAULT_DILATIONS = 2


@dataclass
class GlobalParams:
    """Parameters given on the command line."""

    pidfile: str = DEFAULT_PIDFILE
    logfile: Optional[str] = None
    inputname: Optional[str] = None
    logxyname: Optional[str] = None
    configname: str = DEFAULT_CONFFILE
    processing: Optional[str] = None
    outputjpg: str = DEFAULT_OUTPJPEG
    pusiservport: int = DEFAULT_PUSIPORT
    equalize: int = 0
    verb: int = 0
    ndilations: int = DEFAULT_DILATIONS
    nerosions: int = DEFAULT_EROSIONS
    minarea: int = DEFAULT_MINAREA
    maxarea: int = DEFAULT_MAXAREA
    naveraging: int = DEFAULT_NAVERAGE
    xoff: int = 0
    yoff: int = 0
    width: int = 0
    height: int = 0
    ioport: int = DEFAULT_IOPORT
    throwpart: float = DEFAULT_THROWPART
    intensthres: float = DEFAULT_INTENSTHRES
    maxexp: float = EXPOS_MAX
    minexp: float = EXPOS_MIN
    xtarget: float = -1.0
    ytarget: float = -1.0


def _parser() -> argparse.ArgumentParser:
    d = GlobalParams()
    p = argparse.ArgumentParser(usage="%(prog)s [args]", add_help=False,
                                description="Where args are:")
    add = p.add_argument
    add("--maxexp", type=float, dest="maxexp", default=d.maxexp,
        help="maximal exposition time (ms), default: 500")
    add("--minexp", type=float, dest="minexp", default=d.minexp,
        help="minimal exposition time (ms), default: 0.001")
    add("-h", "--help", action="help", help="show this help")
    add("-l", "--logfile", dest="logfile", default=d.logfile,
        help="file to save logs (default: none)")
    add("-P", "--pidfile", dest="pidfile", default=d.pidfile,
        help="pidfile (default: %s)" % DEFAULT_PIDFILE)
    add("-v", "--verbose", action="count", dest="verb", default=d.verb,
        help="increase verbosity level of log file (each -v increased by 1)")
    add("-i", "--input", dest="inputname", default=d.inputname,
        help="file or directory name for monitoring (or grasshopper/basler for capturing)")
    add("-b", "--blackp", type=float, dest="throwpart", default=d.throwpart,
        help="fraction of black pixels to throw away when make histogram eq")
    add("-e", "--equalize", action="store_const", const=1, dest="equalize", default=d.equalize,
        help="make historam equalization of saved jpeg")
    add("-D", "--ndilat", type=int, dest="ndilations", default=d.ndilations,
        help="amount of dilations after thresholding (default: 2)")
    add("-E", "--neros", type=int, dest="nerosions", default=d.nerosions,
        help="amount of erosions after dilations (default: 2)")
    add("-I", "--minarea", type=int, dest="minarea", default=d.minarea,
        help="minimal object pixels amount (default: 400)")
    add("-A", "--maxarea", type=int, dest="maxarea", default=d.maxarea,
        help="maximal object pixels amount (default: 150000)")
    add("-T", "--intthres", type=float, dest="intensthres", default=d.intensthres,
        help="threshold by total object intensity when sorting = |I1-I2|/(I1+I2), default: 0.01")
    add("-x", "--xoff", type=int, dest="xoff", default=d.xoff, help="X offset at grabbed image")
    add("-y", "--yoff", type=int, dest="yoff", default=d.yoff, help="Y offset at grabbed image")
    add("-W", "--width", type=int, dest="width", default=d.width, help="grabbed subimage width")
    add("-H", "--height", type=int, dest="height", default=d.height,
        help="grabbed subimage height")
    add("-X", "--xtarget", type=float, dest="xtarget", default=d.xtarget,
        help="target point X coordinate")
    add("-Y", "--ytarget", type=float, dest="ytarget", default=d.ytarget,
        help="target point Y coordinate")
    add("-L", "--logXY", dest="logxyname", default=d.logxyname,
        help="file to log XY coordinates of selected star")
    add("-c", "--confname", dest="configname", default=d.configname,
        help="name of configuration file (default: ./loccorr.conf)")
    add("-p", "--proc", dest="processing", default=d.processing,
        help='=="%s" to fix corrections with pusirobot drives' % PUSIROBO_POSTPROC)
    add("-C", "--canport", type=int, dest="pusiservport", default=d.pusiservport,
        help="port of local pusirobot CAN server (default: 4444)")
    add("-N", "--naverage", type=int, dest="naveraging", default=d.naveraging,
        help="amount of images to average processing (min 2, max 25)")
    add("--ioport", type=int, dest="ioport", default=d.ioport, help="port for IO communication")
    add("-j", "--jpegout", dest="outputjpg", default=d.outputjpg,
        help="output jpeg file location (default: '%s')" % DEFAULT_OUTPJPEG)
    return p


def parse_args(argv: Optional[Sequence[str]] = None) -> GlobalParams:
    """Parse the command line; show help and exit on ``-h`` or on extra parameters."""
    args: Optional[List[str]] = None if argv is None else list(argv)
    ns = _parser().parse_args(args)
    known = asdict(GlobalParams()).keys()
    return GlobalParams(**{k: v for k, v in vars(ns).items() if k in known})