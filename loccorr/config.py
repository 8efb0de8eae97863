"""Runtime configuration: parameter table, config-file parsing and saving."""

from __future__ import annotations

import enum
import logging
import re
import sys
from dataclasses import dataclass, field, fields
from typing import Optional, Tuple, Union

log = logging.getLogger(__name__)

DBL_EPSILON = sys.float_info.epsilon
INT_MIN = -(2**31)
INT_MAX = 2**31 - 1

# min/max total steps range
MINSTEPS = 100
MAXSTEPS = 50000
FMAXSTEPS = 64000
# steps per pixel
COEFMIN = 0.1
COEFMAX = 10000
# area
MINAREA = 4
MAXAREA = 2500000
MAX_NDILAT = 100
MAX_NEROS = 100
MAX_THROWPART = 0.9
MAX_OFFSET = 10000
# min/max exposition in ms
EXPOS_MIN = 0.1
EXPOS_MAX = 4001.0
GAIN_MIN = 0.0
GAIN_MAX = 100.0
BRIGHT_MIN = 0.0
BRIGHT_MAX = 10.0
# max average images counter
NAVER_MAX = 25
# coefficients to convert dx,dy to du,dv
KUVMIN = -5000.0
KUVMAX = 5000.0
# default coefficient for corrections
KCORR = 0.90
# min/max median seed
MIN_MEDIAN_SEED = 1
MAX_MEDIAN_SEED = 7
# fixed background
FIXED_BK_MIN = 0
FIXED_BK_MAX = 250
# exposition methods
EXPAUTO = 0
EXPMANUAL = 1
# roundness parameter
MINWH = 0.3
MAXWH = 3.0
# name of the message id field in JSON answers
MESSAGEID = "messageid"

# defaults shared with the command line
DEFAULT_PUSIPORT = 4444
DEFAULT_MAXAREA = 150000
DEFAULT_MINAREA = 400
DEFAULT_THROWPART = 0.5
DEFAULT_INTENSTHRES = 0.01
DEFAULT_NAVERAGE = 5
DEFAULT_MAXUSTEPS = 16000
DEFAULT_MAXVSTEPS = 16000
DEFAULT_NEROSIONS = 3
DEFAULT_NDILATIONS = 3

COMMENT = "#"
_FIELD_LIMIT = 127


class ConfigError(Exception):
    """Raised for a wrong, out-of-range or unreadable configuration."""


class ParamType(enum.Enum):
    INT = "int"
    DOUBLE = "double"


@dataclass(frozen=True)
class ConfParam:
    """Description of one configurable parameter."""

    name: str
    type: ParamType
    attr: str
    minval: float
    maxval: float
    help: str

    def format_value(self, value: Union[int, float]) -> str:
        if self.type is ParamType.INT:
            return "%d" % value
        return "%.3f" % value


_E = DBL_EPSILON
_I = ParamType.INT
_D = ParamType.DOUBLE

PARAMS: Tuple[ConfParam, ...] = (
    ConfParam("maxarea", _I, "maxarea", MINAREA - _E, MAXAREA + _E,
              "maximal area (in square pixels) of recognized star image"),
    ConfParam("minarea", _I, "minarea", MINAREA - _E, MAXAREA + _E,
              "minimal area (in square pixels) of recognized star image"),
    ConfParam("minwh", _D, "minwh", MINWH - _E, 1.0,
              "minimal value of W/H roundness parameter"),
    ConfParam("maxwh", _D, "maxwh", 1.0, MAXWH + _E,
              "maximal value of W/H roundness parameter"),
    ConfParam("ndilat", _I, "ndilations", 1.0 - _E, MAX_NDILAT + _E,
              "amount of dilations on binarized image"),
    ConfParam("neros", _I, "nerosions", 1.0 - _E, MAX_NEROS + _E,
              "amount of erosions after dilations"),
    ConfParam("xoffset", _I, "xoff", -_E, MAX_OFFSET + _E, "X offset of subimage"),
    ConfParam("yoffset", _I, "yoff", -_E, MAX_OFFSET + _E, "Y offset of subimage"),
    ConfParam("width", _I, "width", -_E, MAX_OFFSET + _E, "subimage width"),
    ConfParam("height", _I, "height", -_E, MAX_OFFSET + _E, "subimage height"),
    ConfParam("equalize", _I, "equalize", -_E, 1.0 + _E, "make histogram equalization"),
    ConfParam("expmethod", _I, "expmethod", -_E, 1.0 + _E,
              "exposition method: 0 - auto, 1 - fixed"),
    ConfParam("naverage", _I, "naverage", 1 - _E, NAVER_MAX + _E,
              "calculate mean position by N images"),
    ConfParam("umax", _I, "max_usteps", MINSTEPS - _E, MAXSTEPS + _E,
              "maximal value of steps on U semi-axe"),
    ConfParam("vmax", _I, "max_vsteps", MINSTEPS - _E, MAXSTEPS + _E,
              "maximal value of steps on V semi-axe"),
    ConfParam("focmax", _I, "max_fpos", 0.0, float(FMAXSTEPS),
              "maximal focus position in microsteps"),
    ConfParam("focmin", _I, "min_fpos", float(-FMAXSTEPS), 0.0,
              "minimal focus position in microsteps"),
    ConfParam("stpservport", _I, "stpserverport", -_E, 65536.0,
              "port number of steppers' server"),
    ConfParam("Kxu", _D, "kxu", KUVMIN - _E, KUVMAX + _E, "dU = Kxu*dX + Kyu*dY"),
    ConfParam("Kyu", _D, "kyu", KUVMIN - _E, KUVMAX + _E, "dU = Kxu*dX + Kyu*dY"),
    ConfParam("Kxv", _D, "kxv", KUVMIN - _E, KUVMAX + _E, "dV = Kxv*dX + Kyv*dY"),
    ConfParam("Kyv", _D, "kyv", KUVMIN - _E, KUVMAX + _E, "dV = Kxv*dX + Kyv*dY"),
    ConfParam("xtarget", _D, "xtarget", 1.0 - _E, MAX_OFFSET + _E,
              "X coordinate of target position"),
    ConfParam("ytarget", _D, "ytarget", 1.0 - _E, MAX_OFFSET + _E,
              "Y coordinate of target position"),
    ConfParam("eqthrowpart", _D, "throwpart", -_E, MAX_THROWPART + _E,
              "a part of low intensity pixels to throw away when histogram equalized"),
    ConfParam("minexp", _D, "minexp", -_E, EXPOS_MAX + _E, "minimal exposition time"),
    ConfParam("maxexp", _D, "maxexp", -_E, EXPOS_MAX + _E, "maximal exposition time"),
    ConfParam("fixedexp", _D, "fixedexp", EXPOS_MIN - _E, EXPOS_MAX + _E,
              "fixed (in manual mode) exposition time"),
    ConfParam("intensthres", _D, "intensthres", _E, 1.0 + _E,
              "threshold by total object intensity when sorting = |I1-I2|/(I1+I2)"),
    ConfParam("gain", _D, "gain", GAIN_MIN - _E, GAIN_MAX + _E, "gain value in manual mode"),
    ConfParam("brightness", _D, "brightness", BRIGHT_MIN - _E, BRIGHT_MAX - _E,
              "brightness value"),
    ConfParam("starssort", _I, "starssort", -_E, 1.0 + _E,
              "stars sorting algorithm: by distance from target (0) or by intensity (1)"),
    ConfParam("medfilt", _I, "medfilt", -_E, 1.0 + _E, "use median filter"),
    ConfParam("medseed", _I, "medseed", MIN_MEDIAN_SEED - _E, MAX_MEDIAN_SEED + _E,
              "median filter radius"),
    ConfParam("fixedbg", _I, "fixedbkg", -_E, 1.0 + _E,
              "don't calculate background, use fixed value instead"),
    ConfParam("fbglevel", _I, "fixedbkgval", FIXED_BK_MIN - _E, FIXED_BK_MAX + _E,
              "fixed background level"),
)

_BY_NAME = {p.name: p for p in PARAMS}

_INT_RE = re.compile(r"[ \t\n\v\f\r]*([+-]?)(0[xX][0-9a-fA-F]+|0[0-7]*|[1-9][0-9]*)")
_FLOAT_RE = re.compile(
    r"[ \t\n\v\f\r]*[+-]?(?:(?:[0-9]+\.?[0-9]*|\.[0-9]+)(?:[eE][+-]?[0-9]+)?"
    r"|inf(?:inity)?|nan)",
    re.IGNORECASE,
)


def _parse_int(text: str) -> Optional[int]:
    m = _INT_RE.fullmatch(text)
    if not m:
        return None
    sign, digits = m.groups()
    if digits[:2].lower() == "0x":
        value = int(digits[2:], 16)
    elif len(digits) > 1:
        value = int(digits[1:], 8)
    else:
        value = int(digits)
    if sign == "-":
        value = -value
    if value > INT_MAX or value < INT_MIN:
        return None
    return value


def _parse_double(text: str) -> Optional[float]:
    if not _FLOAT_RE.fullmatch(text):
        return None
    return float(text)


def _omit_spaces(text: str) -> str:
    """Drop leading blanks and everything from the first inner blank on."""
    return re.split(r"[ \t]", text.lstrip(" \t"), maxsplit=1)[0]


def get_keyval(pair: Optional[str]) -> Optional[Tuple[str, str]]:
    """Split a ``key = value`` line.

    Returns ``(key, value)``, or None for empty and comment lines.
    Raises ConfigError for a line that is neither.
    """
    if not pair or len(pair) < 3:
        return None
    m = re.match(r"[^=]{1,%d}" % _FIELD_LIMIT, pair)
    if not m:
        return None
    rawkey = m.group(0)
    rest = pair[m.end():]
    if rest.startswith("="):
        vm = re.match(r"[^\n]{1,%d}" % _FIELD_LIMIT, rest[1:])
        if vm:
            key = _omit_spaces(rawkey)
            if key.startswith(COMMENT):
                return None
            return key, _omit_spaces(vm.group(0))
    key = _omit_spaces(rawkey)
    if key.startswith(("#", "%")):
        return None
    raise ConfigError(f"malformed configuration line: {pair!r}")


def chk_keyval(key: str, val: str) -> Tuple[ConfParam, Union[int, float]]:
    """Look up ``key`` and convert ``val``; raise ConfigError if wrong or out of range."""
    par = _BY_NAME.get(key)
    if par is None:
        raise ConfigError(f"unknown parameter '{key}'")
    if par.type is ParamType.INT:
        value: Optional[Union[int, float]] = _parse_int(val)
        if value is None:
            raise ConfigError(f"Wrong integer value '{val}' of parameter '{key}'")
        shown = "%d" % value
    else:
        value = _parse_double(val)
        if value is None:
            raise ConfigError(f"Wrong double value '{val}' of parameter '{key}'")
        shown = "%g" % value
    if par.minval < value < par.maxval:
        return par, value
    raise ConfigError(
        "Value (%s) of parameter %s out of range %g..%g" % (shown, key, par.minval, par.maxval)
    )


def get_cmd_list() -> str:
    """List every parameter with its help text and allowed range."""
    return "".join(
        "%s=newval - %s (from %g to %g)\n"
        % (p.name, p.help, p.minval + DBL_EPSILON, p.maxval - DBL_EPSILON)
        for p in PARAMS
    )


@dataclass
class Configuration:
    """Current values of all configurable parameters."""

    max_usteps: int = DEFAULT_MAXUSTEPS
    max_vsteps: int = DEFAULT_MAXVSTEPS
    max_fpos: int = FMAXSTEPS - 1
    min_fpos: int = -FMAXSTEPS + 1
    minarea: int = DEFAULT_MINAREA
    maxarea: int = DEFAULT_MAXAREA
    nerosions: int = DEFAULT_NEROSIONS
    ndilations: int = DEFAULT_NDILATIONS
    xoff: int = 0
    yoff: int = 0
    width: int = 0
    height: int = 0
    equalize: int = 1
    naverage: int = DEFAULT_NAVERAGE
    stpserverport: int = DEFAULT_PUSIPORT
    starssort: int = 0
    expmethod: int = EXPAUTO
    medfilt: int = 0
    medseed: int = MIN_MEDIAN_SEED
    fixedbkg: int = 0
    fixedbkgval: int = 0
    kxu: float = 0.0
    kyu: float = 0.0
    kxv: float = 0.0
    kyv: float = 0.0
    minwh: float = 0.9
    maxwh: float = 1.1
    xtarget: float = -1.0
    ytarget: float = -1.0
    throwpart: float = DEFAULT_THROWPART
    maxexp: float = EXPOS_MAX - 1.0
    minexp: float = EXPOS_MIN + DBL_EPSILON
    fixedexp: float = EXPOS_MIN * 2
    gain: float = 20.0
    brightness: float = 0.0
    intensthres: float = DEFAULT_INTENSTHRES
    source: Optional[str] = field(default=None, repr=False, compare=False)

    def apply(self, key: str, val: str) -> Union[int, float]:
        """Check ``key=val`` and store the value; return the stored value."""
        par, value = chk_keyval(key, val)
        setattr(self, par.attr, value)
        return value

    def load(self, confname: str) -> int:
        """Read parameters from a file; return how many distinct ones were set.

        Wrong lines are skipped with a warning; a malformed line ends reading.
        Raises ConfigError if the file can't be opened or a parameter repeats
        (values read are kept in that case).
        """
        self.source = str(confname)
        counts: dict = {}
        try:
            with open(confname, "r") as f:
                for line in f:
                    try:
                        kv = get_keyval(line)
                    except ConfigError as exc:
                        log.warning("%s", exc)
                        break
                    if kv is None:
                        continue
                    key, val = kv
                    try:
                        self.apply(key, val)
                    except ConfigError as exc:
                        log.warning("Parameter '%s' is wrong or out of range: %s", key, exc)
                        continue
                    counts[key] = counts.get(key, 0) + 1
        except OSError as exc:
            raise ConfigError(f"Can't open {confname}: {exc}") from exc
        repeated = [name for name, n in counts.items() if n > 1]
        if repeated:
            for name in repeated:
                log.warning("parameter '%s' meets %d times", name, counts[name])
            raise ConfigError("repeated parameters: " + ", ".join(repeated))
        return len(counts)

    def save(self, confname: Optional[str] = None) -> None:
        """Write all parameters to ``confname`` or to the file last loaded."""
        if confname is None:
            if self.source is None:
                raise ConfigError("no conffile given")
            confname = self.source
        try:
            with open(confname, "w") as f:
                for p in PARAMS:
                    f.write("%s = %s\n" % (p.name, p.format_value(getattr(self, p.attr))))
        except OSError as exc:
            raise ConfigError(f"Can't open {confname} to store configuration: {exc}") from exc
        log.debug("Configuration file '%s' saved", confname)

    def as_json(self, messageid: str) -> str:
        """Return the current configuration as a one-line JSON object."""
        items = ", ".join(
            '"%s": %s' % (p.name, p.format_value(getattr(self, p.attr))) for p in PARAMS
        )
        return '{ "%s": "%s", %s }\n' % (MESSAGEID, messageid, items)


CONFIG_FIELDS = tuple(f.name for f in fields(Configuration) if f.name != "source")