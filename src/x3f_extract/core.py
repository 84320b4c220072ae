from dataclasses import dataclass
from enum import Enum
from typing import Optional, Tuple

from .errors import BadOption
from .config import X3F_VERSION_4_0


class OutputKind(Enum):
    META = "meta"
    JPEG = "jpeg"
    RAW = "raw"
    TIFF = "tiff"
    DNG = "dng"
    PPM_ASCII = "ppm-p3"
    PPM = "ppm-p6"
    HISTOGRAM = "histogram"


class ColorEncoding(Enum):
    NONE = "none"
    SRGB = "sRGB"
    ARGB = "AdobeRGB"
    PPRGB = "ProPhotoRGB"
    UNPROCESSED = "unprocessed"
    QTOP = "qtop"


class SpatialGain(Enum):
    AUTO = "auto"
    ON = "on"
    OFF = "off"


# 1. Format token -> (output kind, log histogram)
FORMATS = {
    'meta': (OutputKind.META, False),
    'jpg': (OutputKind.JPEG, False),
    'raw': (OutputKind.RAW, False),
    'tiff': (OutputKind.TIFF, False),
    'dng': (OutputKind.DNG, False),
    'ppm-ascii': (OutputKind.PPM_ASCII, False),
    'ppm': (OutputKind.PPM, False),
    'histogram': (OutputKind.HISTOGRAM, False),
    'loghist': (OutputKind.HISTOGRAM, True),
}

# 2. Output kind -> file extension
EXTENSIONS = {
    OutputKind.META: '.meta',
    OutputKind.JPEG: '.jpg',
    OutputKind.RAW: '.raw',
    OutputKind.TIFF: '.tif',
    OutputKind.DNG: '.dng',
    OutputKind.PPM_ASCII: '.ppm',
    OutputKind.PPM: '.ppm',
    OutputKind.HISTOGRAM: '.csv',
}

# 3. Color token -> encoding
COLOR_ENCODINGS = {encoding.value: encoding for encoding in ColorEncoding}

# 4. Kinds that need the decoded raw image
RAW_DECODED_KINDS = {
    OutputKind.TIFF,
    OutputKind.DNG,
    OutputKind.PPM_ASCII,
    OutputKind.PPM,
    OutputKind.HISTOGRAM,
}

# Encodings that dump sensor values without any preprocessing
UNPROCESSED_ENCODINGS = {ColorEncoding.UNPROCESSED, ColorEncoding.QTOP}

DEFAULT_FORMAT = 'dng'
DEFAULT_COLOR = 'sRGB'


@dataclass(frozen=True)
class ExtractionRequest:
    """Everything the user chose for one run, after token validation."""
    kind: OutputKind = OutputKind.DNG
    color: ColorEncoding = ColorEncoding.SRGB
    crop: bool = True
    fix_bad: bool = True
    denoise: bool = True
    spatial_gain: SpatialGain = SpatialGain.AUTO
    white_balance: Optional[str] = None
    compress: bool = False
    legacy_offset: Optional[int] = None  # None means automatic
    output_dir: Optional[str] = None
    log_hist: bool = False

    @property
    def extension(self) -> str:
        return EXTENSIONS[self.kind]


@dataclass(frozen=True)
class ExtractionPlan:
    need_preview: bool
    need_metadata: bool
    need_raw_decoded: bool
    need_raw_undecoded: bool
    request: ExtractionRequest


def parse_format(token: str) -> Tuple[OutputKind, bool]:
    try:
        return FORMATS[token]
    except KeyError:
        raise BadOption(f"Unknown format : {token}") from None


def parse_color(token: str) -> ColorEncoding:
    try:
        return COLOR_ENCODINGS[token]
    except KeyError:
        raise BadOption(f"Unknown color encoding: {token}") from None


def build_request(
    fmt: str = DEFAULT_FORMAT,
    color: str = DEFAULT_COLOR,
    **overrides,
) -> ExtractionRequest:
    """
    Turn format/color tokens plus option overrides into a request.

    Unknown tokens raise BadOption here, before any plan is resolved.
    """
    kind, log_hist = parse_format(fmt)
    return ExtractionRequest(
        kind=kind,
        color=parse_color(color),
        log_hist=log_hist,
        **overrides,
    )


def resolve_plan(request: ExtractionRequest) -> ExtractionPlan:
    """Decide which container sections have to be loaded for ``request``."""
    need_raw_decoded = request.kind in RAW_DECODED_KINDS

    # Crop needs the active-area rectangle, processed encodings need the
    # calibration data; both live in the metadata sections.
    need_metadata = (
        request.kind in (OutputKind.META, OutputKind.DNG)
        or (need_raw_decoded
            and (request.crop or request.color not in UNPROCESSED_ENCODINGS))
    )

    return ExtractionPlan(
        need_preview=request.kind is OutputKind.JPEG,
        need_metadata=need_metadata,
        need_raw_decoded=need_raw_decoded,
        need_raw_undecoded=request.kind is OutputKind.RAW,
        request=request,
    )


def resolve_spatial_gain(setting: SpatialGain, version: int) -> bool:
    """
    Resolve the spatial gain tri-state against the container version.

    Quattro-generation files already come corrected, so the automatic
    default only applies the gain to older containers.
    """
    if setting is SpatialGain.ON:
        return True
    if setting is SpatialGain.OFF:
        return False
    return version < X3F_VERSION_4_0
