import os
import sys

import click

from x3f_extract import core, orchestrator
from x3f_extract.config import DEFAULT_MAX_PRINTED_MATRIX_ELEMENTS, VERSION, ExtractConfig
from x3f_extract.errors import BadOption
from x3f_extract.logger import create_logger, setup_logging

FORMAT_HELP = """Extract file format:
meta: dump metadata;
jpg: dump embedded JPEG;
raw: dump RAW area undecoded;
tiff: RAW/color as 3x16 bit TIFF;
dng: RAW as DNG LinearRaw (default);
ppm-ascii: RAW/color as 3x16 bit PPM/P3 (ascii, not generally supported);
ppm: RAW/color as 3x16 bit PPM/P6 (binary);
histogram: histogram as csv file;
loghist: histogram as csv file, with log exposure."""

COLOR_HELP = """Convert to RGB color space:
none: neither scaling nor gamma;
sRGB, AdobeRGB, ProPhotoRGB: the named color space;
unprocessed: RAW without any preprocessing;
qtop: Quattro top layer without preprocessing.
Does not affect DNG output."""


@click.command()
@click.argument("files", nargs=-1, type=click.Path())
@click.option("-o", "--output", "output_dir", type=click.Path(), help="Output directory.")
@click.option(
    "-f",
    "--format",
    "fmt",
    default=core.DEFAULT_FORMAT,
    type=click.Choice(list(core.FORMATS.keys())),
    help=FORMAT_HELP,
)
@click.option(
    "-c",
    "--color",
    default=core.DEFAULT_COLOR,
    type=click.Choice(list(core.COLOR_ENCODINGS.keys())),
    help=COLOR_HELP,
)
@click.option("-r", "--no-crop", is_flag=True, help="Do not crop to active area.")
@click.option("--no-denoise", is_flag=True, help="Do not denoise RAW data.")
@click.option(
    "--sgain/--no-sgain",
    default=None,
    help="Apply or skip spatial gain (color compensation). Default: apply except for Quattro.",
)
@click.option("-b", "--no-fix-bad", is_flag=True, help="Do not fix bad pixels.")
@click.option(
    "-w",
    "--white-balance",
    default=None,
    help="White balance preset: Auto, Sunlight, Shadow, Overcast, Incandescent, "
         "Florescent, Flash, Custom, ColorTemp, AutoLSP.",
)
@click.option("-z", "--compress", is_flag=True, help="Enable ZIP compression for DNG and TIFF output.")
@click.option("--ocl", is_flag=True, help="Use the accelerated decode strategy.")
@click.option(
    "--offset",
    type=int,
    default=None,
    help="Sensor offset for SD14 and older. If not given, the offset is automatic.",
)
@click.option(
    "--matrixmax",
    type=int,
    default=DEFAULT_MAX_PRINTED_MATRIX_ELEMENTS,
    show_default=True,
    help="Max number of matrix elements printed in metadata dumps.",
)
@click.option("-d", "--debug", is_flag=True, help="Verbose output for debugging.")
@click.option("-q", "--quiet", is_flag=True, help="Suppress all messages except errors.")
def main(files, output_dir, fmt, color, no_crop, no_denoise, sgain, no_fix_bad, white_balance,
         compress, ocl, offset, matrixmax, debug, quiet):
    """
    Extracts images and metadata from X3F files.

    FILES: One or more X3F files. Each produces one output file next to it,
    or in the output directory.
    """
    config = ExtractConfig(
        log_level="ERROR" if quiet else "DEBUG" if debug else "INFO",
        max_printed_matrix_elements=matrixmax,
        accelerated=ocl,
    )
    setup_logging(config.log_level)
    logger = create_logger()
    logger.info(f"X3F EXTRACT VERSION = {VERSION}")

    if output_dir and not os.path.isdir(output_dir):
        logger.warning(f"Output directory {output_dir} does not exist")

    if sgain is None:
        spatial_gain = core.SpatialGain.AUTO
    else:
        spatial_gain = core.SpatialGain.ON if sgain else core.SpatialGain.OFF

    try:
        request = core.build_request(
            fmt,
            color,
            crop=not no_crop,
            fix_bad=not no_fix_bad,
            denoise=not no_denoise,
            spatial_gain=spatial_gain,
            white_balance=white_balance,
            compress=compress,
            legacy_offset=offset,
            output_dir=output_dir,
        )
    except BadOption as e:
        raise click.ClickException(str(e))

    try:
        run = orchestrator.process_files(files, request, config)
    except Exception as e:
        # Per-file errors are handled by the orchestrator; this is anything else.
        raise click.ClickException(f"A critical error occurred: {e}")

    if run.no_files:
        click.echo(click.get_current_context().get_usage(), err=True)
    sys.exit(run.exit_code)


if __name__ == "__main__":
    main()
