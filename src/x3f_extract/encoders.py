"""
Output encoders.

One function per output kind. Each writes the complete artifact to the path
it is given or raises EncodeFailure; partial files are left where they are.
"""
import functools
from typing import Optional

import colour
import numpy as np
import rawpy
import tifffile

from . import processing
from .config import VERSION, DEFAULT_MAX_PRINTED_MATRIX_ELEMENTS
from .core import ColorEncoding
from .errors import EncodeFailure
from .logger import Logger
from .x3f import RAW_TYPES, X3FContainer

# TIFF data types
TIFF_BYTE = 1
TIFF_ASCII = 2
TIFF_SHORT = 3
TIFF_RATIONAL = 5
TIFF_SRATIONAL = 10

PHOTOMETRIC_LINEAR_RAW = 34892
CALIBRATION_ILLUMINANT_D50 = 23

LOG_HIST_STEPS_PER_EV = 10
LOG_HIST_MIN_EV = -16

MATRIX_WORDS_PER_LINE = 8


def _encoder(func):
    """Translate collaborator errors raised by an encoder into EncodeFailure."""
    @functools.wraps(func)
    def wrapper(*args, **kwargs):
        try:
            return func(*args, **kwargs)
        except EncodeFailure:
            raise
        except (OSError, ValueError, KeyError, rawpy.LibRawError) as e:
            raise EncodeFailure(f"{func.__name__}: {e}") from e
    return wrapper


def _require_raw(container: X3FContainer):
    if container.raw is None:
        raise EncodeFailure("RAW data has not been loaded")
    return container.raw


def _rgb_planes(img: np.ndarray) -> np.ndarray:
    """Keep the first three planes of a stacked sensor dump; 2-D images pass through."""
    if img.ndim == 3 and img.shape[2] > 3:
        img = np.ascontiguousarray(img[..., :3])
    if img.ndim == 3 and img.shape[2] != 3:
        raise EncodeFailure(f"Cannot write {img.shape[2]} color planes")
    return img


def _description(color: Optional[ColorEncoding], crop, fix_bad, denoise, sgain, wb) -> str:
    color_name = color.value if color is not None else 'linear'
    return (f"x3f_extract {VERSION}: color={color_name} crop={int(crop)} fix_bad={int(fix_bad)} "
            f"denoise={int(denoise)} sgain={int(sgain)} wb={wb or 'as shot'}")


def _camera_model(container: X3FContainer) -> str:
    for name, value in container.properties or []:
        if name == 'CAMMODEL' and value:
            return value
    return "Sigma X3F"


# --- Section dumps ---

@_encoder
def dump_meta(
    container: X3FContainer,
    path: str,
    max_printed_matrix_elements: int = DEFAULT_MAX_PRINTED_MATRIX_ELEMENTS,
):
    """Write a text dump of header, directory, properties and CAMF block."""
    if container.camf is None:
        raise EncodeFailure("Metadata has not been loaded")

    h = container.header
    with open(path, 'w', encoding='utf-8') as f:
        f.write("BEGIN: file header meta data\n")
        f.write(f"  version           = {h.version_string} (0x{h.version:08x})\n")
        f.write(f"  unique_identifier = {h.unique_identifier.hex()}\n")
        f.write(f"  mark_bits         = 0x{h.mark_bits:08x}\n")
        f.write(f"  columns           = {h.columns}\n")
        f.write(f"  rows              = {h.rows}\n")
        f.write(f"  rotation          = {h.rotation}\n")
        if h.white_balance:
            f.write(f"  white_balance     = {h.white_balance}\n")
        if h.color_mode:
            f.write(f"  color_mode        = {h.color_mode}\n")
        for i, ext_type in enumerate(h.extended_types):
            if ext_type:
                f.write(f"  extended[{i}]      = type {ext_type} value {h.extended_data[i]:g}\n")
        f.write("END: file header meta data\n\n")

        f.write("BEGIN: directory entries\n")
        for i, entry in enumerate(container.entries):
            f.write(f"  [{i}] type = {entry.type} offset = {entry.offset} size = {entry.size}\n")
            if entry.image is not None:
                image = entry.image
                raw_name = RAW_TYPES.get(image.type_format, '')
                f.write(f"      type_format = 0x{image.type_format:08x} {raw_name}\n")
                f.write(f"      columns = {image.columns} rows = {image.rows} "
                        f"row_stride = {image.row_stride}\n")
        f.write("END: directory entries\n\n")

        if container.properties is not None:
            f.write("BEGIN: property list\n")
            for name, value in container.properties:
                f.write(f"  {name} = {value}\n")
            f.write("END: property list\n\n")

        camf = container.camf_header
        f.write("BEGIN: CAMF\n")
        f.write(f"  version = 0x{camf.version:08x} type = {camf.type}\n")
        f.write(f"  words   = {' '.join(f'0x{w:08x}' for w in camf.words)}\n")
        f.write(f"  size    = {len(container.camf)}\n")
        words = np.frombuffer(container.camf[:len(container.camf) // 4 * 4], dtype='<u4')
        shown = words[:max(max_printed_matrix_elements, 0)]
        for start in range(0, len(shown), MATRIX_WORDS_PER_LINE):
            line = shown[start:start + MATRIX_WORDS_PER_LINE]
            f.write("    " + " ".join(f"{int(w):08x}" for w in line) + "\n")
        if len(shown) < len(words):
            f.write(f"    ... ({len(words) - len(shown)} more)\n")
        f.write("END: CAMF\n")


@_encoder
def dump_jpeg(container: X3FContainer, path: str):
    if container.thumbnail is None:
        raise EncodeFailure("JPEG thumbnail has not been loaded")
    with open(path, 'wb') as f:
        f.write(container.thumbnail)


@_encoder
def dump_raw_block(container: X3FContainer, path: str):
    if container.image_block is None:
        raise EncodeFailure("RAW image block has not been loaded")
    with open(path, 'wb') as f:
        f.write(container.image_block)


# --- Developed outputs ---

@_encoder
def write_tiff(
    container: X3FContainer,
    path: str,
    color: ColorEncoding,
    crop: bool,
    fix_bad: bool,
    denoise: bool,
    sgain: bool,
    wb: Optional[str],
    compress: bool,
    legacy_offset: Optional[int] = None,
    accelerated: bool = False,
    logger: Optional[Logger] = None,
):
    """Write a 3x16 bit TIFF (single plane for the Quattro top layer)."""
    img = processing.develop(
        _require_raw(container), color, crop=crop, fix_bad=fix_bad, denoise=denoise, wb=wb, sgain=sgain,
        version=container.version, legacy_offset=legacy_offset, accelerated=accelerated,
        logger=logger,
    )
    img = _rgb_planes(img)
    tifffile.imwrite(
        path,
        img,
        photometric='rgb' if img.ndim == 3 else 'minisblack',
        compression='zlib' if compress else None,
        description=_description(color, crop, fix_bad, denoise, sgain, wb),
        metadata=None,
    )


@_encoder
def write_dng(
    container: X3FContainer,
    path: str,
    fix_bad: bool,
    denoise: bool,
    sgain: bool,
    wb: Optional[str],
    compress: bool,
    legacy_offset: Optional[int] = None,
    accelerated: bool = False,
    logger: Optional[Logger] = None,
):
    """Write a 16-bit LinearRaw DNG in linear ProPhoto RGB."""
    img = processing.develop(
        _require_raw(container), ColorEncoding.PPRGB, crop=True, fix_bad=fix_bad, denoise=denoise,
        wb=wb, sgain=sgain, version=container.version, legacy_offset=legacy_offset, linear=True,
        accelerated=accelerated, logger=logger,
    )

    camera_model = _camera_model(container)
    # ColorMatrix1 maps XYZ to the image space
    matrix = colour.RGB_COLOURSPACES['ProPhoto RGB'].matrix_XYZ_to_RGB
    matrix_rational = []
    for v in matrix.flatten().tolist():
        matrix_rational.extend([int(round(v * 10000)), 10000])

    extratags = [
        (50706, TIFF_BYTE, 4, [1, 4, 0, 0]),                            # DNGVersion
        (50707, TIFF_BYTE, 4, [1, 2, 0, 0]),                            # DNGBackwardVersion
        (50708, TIFF_ASCII, len(camera_model) + 1, camera_model),        # UniqueCameraModel
        (50714, TIFF_SHORT, 3, [0, 0, 0]),                              # BlackLevel
        (50717, TIFF_SHORT, 1, 65535),                                  # WhiteLevel
        (50721, TIFF_SRATIONAL, 9, matrix_rational),                    # ColorMatrix1
        (50728, TIFF_RATIONAL, 3, [1, 1, 1, 1, 1, 1]),                  # AsShotNeutral
        (50778, TIFF_SHORT, 1, CALIBRATION_ILLUMINANT_D50),             # CalibrationIlluminant1
    ]

    tifffile.imwrite(
        path,
        img,
        photometric=PHOTOMETRIC_LINEAR_RAW,
        planarconfig=1,
        compression='zlib' if compress else None,
        extratags=extratags,
        description=_description(None, True, fix_bad, denoise, sgain, wb),
        metadata=None,
    )


@_encoder
def write_ppm(
    container: X3FContainer,
    path: str,
    color: ColorEncoding,
    crop: bool,
    fix_bad: bool,
    denoise: bool,
    sgain: bool,
    wb: Optional[str],
    binary: bool,
    legacy_offset: Optional[int] = None,
    accelerated: bool = False,
    logger: Optional[Logger] = None,
):
    """Write a 16-bit PPM, P6 when ``binary`` else P3."""
    img = processing.develop(
        _require_raw(container), color, crop=crop, fix_bad=fix_bad, denoise=denoise, wb=wb, sgain=sgain,
        version=container.version, legacy_offset=legacy_offset, accelerated=accelerated,
        logger=logger,
    )
    img = _rgb_planes(img)
    if img.ndim == 2:
        img = np.repeat(img[..., np.newaxis], 3, axis=2)
    height, width = img.shape[:2]

    if binary:
        with open(path, 'wb') as f:
            f.write(f"P6\n{width} {height}\n65535\n".encode('ascii'))
            f.write(img.astype('>u2').tobytes())
    else:
        with open(path, 'w', encoding='ascii') as f:
            f.write(f"P3\n{width} {height}\n65535\n")
            np.savetxt(f, img.reshape(height, width * 3), fmt='%d')


def histogram_rows(img: np.ndarray, log_hist: bool):
    """
    Count sample values per channel.

    Returns (keys, counts) where counts has one column per channel. Linear
    keys are sample values; log keys are exposure in EV below full scale.
    """
    channels = 1 if img.ndim == 2 else img.shape[2]
    samples = img.reshape(-1, channels).astype(np.int64)

    if log_hist:
        nbins = -LOG_HIST_MIN_EV * LOG_HIST_STEPS_PER_EV + 1
        ev = np.log2(np.maximum(samples, 1) / 65535.0)
        bins = np.floor(ev * LOG_HIST_STEPS_PER_EV).astype(np.int64) - LOG_HIST_MIN_EV * LOG_HIST_STEPS_PER_EV
        bins = np.clip(bins, 0, nbins - 1)
        keys = LOG_HIST_MIN_EV + np.arange(nbins) / LOG_HIST_STEPS_PER_EV
    else:
        nbins = int(samples.max()) + 1 if samples.size else 1
        bins = samples
        keys = np.arange(nbins)

    counts = np.stack([np.bincount(bins[:, c], minlength=nbins) for c in range(channels)], axis=1)
    return keys, counts


@_encoder
def write_histogram(
    container: X3FContainer,
    path: str,
    color: ColorEncoding,
    crop: bool,
    fix_bad: bool,
    denoise: bool,
    sgain: bool,
    wb: Optional[str],
    log_hist: bool,
    legacy_offset: Optional[int] = None,
    accelerated: bool = False,
    logger: Optional[Logger] = None,
):
    """Write a CSV histogram; rows with no samples are omitted."""
    img = processing.develop(
        _require_raw(container), color, crop=crop, fix_bad=fix_bad, denoise=denoise, wb=wb, sgain=sgain,
        version=container.version, legacy_offset=legacy_offset, accelerated=accelerated,
        logger=logger,
    )
    keys, counts = histogram_rows(img, log_hist)

    key_name = 'exposure' if log_hist else 'value'
    with open(path, 'w', encoding='ascii') as f:
        f.write(",".join([key_name] + [f"channel{c}" for c in range(counts.shape[1])]) + "\n")
        for key, row in zip(keys, counts):
            if not row.any():
                continue
            key_text = f"{key:.1f}" if log_hist else str(int(key))
            f.write(",".join([key_text] + [str(int(n)) for n in row]) + "\n")
