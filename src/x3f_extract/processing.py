"""
Raw development backend.

Turns the LibRaw handle of a loaded container into a 16-bit image for the
TIFF, DNG, PPM and histogram encoders.
"""
from typing import Optional

import colour
import numpy as np
import rawpy

from .core import ColorEncoding, UNPROCESSED_ENCODINGS
from .logger import Logger, create_logger
from .config import X3F_VERSION_2_3, X3F_VERSION_4_0

WHITE_BALANCE_PRESETS = [
    'Auto',
    'Sunlight',
    'Shadow',
    'Overcast',
    'Incandescent',
    'Florescent',
    'Flash',
    'Custom',
    'ColorTemp',
    'AutoLSP',
]

AUTO_WHITE_BALANCE = {'Auto', 'AutoLSP'}

# Color encoding -> colour library colourspace name
OUTPUT_COLOURSPACES = {
    ColorEncoding.SRGB: 'sRGB',
    ColorEncoding.ARGB: 'Adobe RGB (1998)',
    ColorEncoding.PPRGB: 'ProPhoto RGB',
}

WORKING_COLOURSPACE = 'ProPhoto RGB'

# Hot pixel: brighter than this many times its brightest neighbour
HOT_PIXEL_RATIO = 4.0
# Neighbourhood level below which nothing is classified as bad
BAD_PIXEL_FLOOR = 64


def validate_white_balance(wb: Optional[str]) -> Optional[str]:
    if wb is not None and wb not in WHITE_BALANCE_PRESETS:
        raise ValueError(f"Unknown white balance preset: {wb}")
    return wb


def apply_legacy_offset(raw_image: np.ndarray, offset: int):
    """Add a signed offset to the sensor values in place, clipped to 16 bit."""
    shifted = np.clip(raw_image.astype(np.int32) + offset, 0, 65535)
    raw_image[...] = shifted.astype(raw_image.dtype)


def fix_bad_pixels(img: np.ndarray) -> int:
    """
    Replace isolated hot and dead pixels in place.

    Each plane is compared against its four nearest same-colour neighbours
    (distance 1 for stacked Foveon planes, distance 2 for a Bayer mosaic). A
    pixel far above its brightest neighbour, or zero inside a lit
    neighbourhood, is replaced by the neighbours' median.

    Returns:
        Number of pixels replaced.
    """
    planes = img[..., np.newaxis] if img.ndim == 2 else img
    step = 2 if img.ndim == 2 else 1
    fixed = 0

    for c in range(planes.shape[2]):
        plane = planes[..., c]
        padded = np.pad(plane.astype(np.int32), step, mode='edge')
        neighbours = np.stack([
            padded[:-2 * step, step:-step],
            padded[2 * step:, step:-step],
            padded[step:-step, :-2 * step],
            padded[step:-step, 2 * step:],
        ])
        center = plane.astype(np.int32)

        hot = center > np.maximum(neighbours.max(axis=0) * HOT_PIXEL_RATIO, BAD_PIXEL_FLOOR)
        dead = (center == 0) & (neighbours.min(axis=0) > BAD_PIXEL_FLOOR)
        bad = hot | dead
        count = int(np.count_nonzero(bad))
        if count:
            median = np.median(neighbours, axis=0)
            plane[bad] = median[bad].astype(plane.dtype)
            fixed += count

    return fixed


def _sensor_data(raw, color: ColorEncoding, crop: bool, version: int) -> np.ndarray:
    if color is ColorEncoding.QTOP and version < X3F_VERSION_4_0:
        raise ValueError("qtop is only available for Quattro files")

    data = np.array(raw.raw_image_visible if crop else raw.raw_image, copy=True)
    if color is ColorEncoding.QTOP and data.ndim == 3:
        data = data[..., 0]
    return data


def develop(
    raw,
    color: ColorEncoding,
    crop: bool = True,
    fix_bad: bool = True,
    denoise: bool = True,
    wb: Optional[str] = None,
    sgain: bool = False,
    version: int = X3F_VERSION_4_0,
    legacy_offset: Optional[int] = None,
    linear: bool = False,
    accelerated: bool = False,
    logger: Optional[Logger] = None,
) -> np.ndarray:
    """
    Develop the decoded raw data into a uint16 image.

    Args:
        raw: rawpy handle of the loaded container
        color: output color encoding
        crop: restrict sensor dumps to the active area
        fix_bad: replace isolated hot and dead pixels before development
        denoise: enable FBDD noise reduction
        wb: white balance preset, None for the as-shot balance
        sgain: resolved spatial gain decision; only logged, pixel data is not
            changed (LibRaw applies its own Foveon flat-field correction)
        version: container version, selects legacy and Quattro behaviour
        legacy_offset: sensor offset for pre-2.3 containers, None for automatic
        linear: skip the output transfer function (DNG)
        accelerated: prefer the fast decode strategy

    Returns:
        (H, W, 3) array, or (H, W) for the Quattro top layer
    """
    if logger is None:
        logger = create_logger()

    wb = validate_white_balance(wb)

    # --- Unprocessed: sensor values, no preprocessing ---
    if color in UNPROCESSED_ENCODINGS:
        logger.info(f"  🔹 Dumping sensor data ({color.value}, crop={int(crop)})")
        return _sensor_data(raw, color, crop, version)

    # --- Step 1: sensor preprocessing (in place on the LibRaw buffer) ---
    if legacy_offset is not None:
        if version < X3F_VERSION_2_3:
            logger.info(f"  🔹 [Step 1] Applying legacy offset {legacy_offset:+d}")
            apply_legacy_offset(raw.raw_image, legacy_offset)
        else:
            logger.debug("  Legacy offset ignored for this container version")

    if fix_bad:
        fixed = fix_bad_pixels(raw.raw_image)
        logger.info(f"  🔹 [Step 1] Fixed {fixed} bad pixels")

    if sgain:
        logger.debug("  Spatial gain requested; LibRaw applies its own Foveon flat-field correction")

    if not crop:
        logger.warning("  ⚠️  Processed output is always cropped to the active area")

    # --- Step 2: decode ---
    logger.info(f"  🔹 [Step 2] Decoding RAW (denoise={int(denoise)}, wb={wb or 'as shot'})...")
    params = dict(
        gamma=(1, 1),
        no_auto_bright=True,
        output_bps=16,
        use_camera_wb=wb not in AUTO_WHITE_BALANCE,
        use_auto_wb=wb in AUTO_WHITE_BALANCE,
        fbdd_noise_reduction=(
            rawpy.FBDDNoiseReductionMode.Full if denoise else rawpy.FBDDNoiseReductionMode.Off
        ),
        demosaic_algorithm=(
            rawpy.DemosaicAlgorithm.LINEAR if accelerated else rawpy.DemosaicAlgorithm.AHD
        ),
    )

    if color is ColorEncoding.NONE:
        # Camera space, neither scaling nor gamma
        return raw.postprocess(output_color=rawpy.ColorSpace.raw, no_auto_scale=True, **params)

    prophoto_linear = raw.postprocess(output_color=rawpy.ColorSpace.ProPhoto, **params)
    if linear:
        return prophoto_linear

    # --- Step 3: Color Transform (ProPhoto -> target) ---
    target = OUTPUT_COLOURSPACES[color]
    logger.info(f"  🔹 [Step 3] Color Transform ({WORKING_COLOURSPACE} -> {target})")
    img = prophoto_linear.astype(np.float32) / 65535.0
    del prophoto_linear
    img = colour.RGB_to_RGB(
        img,
        colour.RGB_COLOURSPACES[WORKING_COLOURSPACE],
        colour.RGB_COLOURSPACES[target],
        apply_cctf_encoding=True,
    )
    np.clip(img, 0.0, 1.0, out=img)
    return (img * 65535).astype(np.uint16)
