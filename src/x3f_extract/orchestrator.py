import os
from dataclasses import dataclass, field
from typing import Callable, List, Optional, Sequence

from . import encoders
from .config import ExtractConfig
from .core import ExtractionPlan, ExtractionRequest, OutputKind, resolve_plan, resolve_spatial_gain
from .errors import EncodeFailure, ErrorKind, RenameFailure, SectionLoadFailure, X3FExtractError
from .logger import Logger, create_logger
from .paths import PathPair, build_paths
from .x3f import Section, X3FContainer


@dataclass(frozen=True)
class ProcessingResult:
    path: str
    succeeded: bool
    error_kind: Optional[ErrorKind] = None
    message: str = ""


@dataclass
class RunResult:
    files_processed: int = 0
    error_count: int = 0
    results: List[ProcessingResult] = field(default_factory=list)

    @property
    def no_files(self) -> bool:
        return self.files_processed == 0

    @property
    def exit_code(self) -> int:
        return 1 if self.error_count > 0 or self.no_files else 0

    def add(self, result: ProcessingResult):
        self.files_processed += 1
        if not result.succeeded:
            self.error_count += 1
        self.results.append(result)


def load_sections(container: X3FContainer, plan: ExtractionPlan):
    """
    Load the sections ``plan`` asks for: preview, metadata, then raw.

    The first failure propagates as SectionLoadFailure; nothing is retried.
    """
    try:
        if plan.need_preview:
            container.load(Section.PREVIEW)
        if plan.need_metadata:
            container.load(Section.METADATA)
        if plan.need_raw_decoded:
            container.load(Section.RAW_DECODED)
        elif plan.need_raw_undecoded:
            container.load(Section.RAW_UNDECODED)
    except OSError as e:
        raise SectionLoadFailure(f"Could not read {container.path}: {e}") from e


def dispatch(
    container: X3FContainer,
    plan: ExtractionPlan,
    tmp_path: str,
    config: ExtractConfig,
    logger: Logger,
):
    """Call the one encoder matching the requested output kind."""
    r = plan.request
    # Resolved here, once the container version is known
    sgain = resolve_spatial_gain(r.spatial_gain, container.version)
    develop_args = dict(
        legacy_offset=r.legacy_offset,
        accelerated=config.accelerated,
        logger=logger,
    )

    if r.kind is OutputKind.META:
        logger.info("Dump META DATA")
        encoders.dump_meta(container, tmp_path, config.max_printed_matrix_elements)
    elif r.kind is OutputKind.JPEG:
        logger.info("Dump JPEG")
        encoders.dump_jpeg(container, tmp_path)
    elif r.kind is OutputKind.RAW:
        logger.info("Dump RAW block")
        encoders.dump_raw_block(container, tmp_path)
    elif r.kind is OutputKind.TIFF:
        logger.info("Dump RAW as TIFF")
        encoders.write_tiff(container, tmp_path, r.color, r.crop, r.fix_bad, r.denoise,
                            sgain, r.white_balance, r.compress, **develop_args)
    elif r.kind is OutputKind.DNG:
        logger.info("Dump RAW as DNG")
        encoders.write_dng(container, tmp_path, r.fix_bad, r.denoise,
                           sgain, r.white_balance, r.compress, **develop_args)
    elif r.kind in (OutputKind.PPM_ASCII, OutputKind.PPM):
        logger.info("Dump RAW as PPM")
        encoders.write_ppm(container, tmp_path, r.color, r.crop, r.fix_bad, r.denoise,
                           sgain, r.white_balance, r.kind is OutputKind.PPM, **develop_args)
    elif r.kind is OutputKind.HISTOGRAM:
        logger.info("Dump RAW as CSV histogram")
        encoders.write_histogram(container, tmp_path, r.color, r.crop, r.fix_bad, r.denoise,
                                 sgain, r.white_balance, r.log_hist, **develop_args)


def commit(paths: PathPair, encode: Callable[[str], None], logger: Logger):
    """
    Encode into the temp path, then rename it over the final path.

    A temp file left by an earlier run is removed first. When encoding
    fails the temp file stays on disk and the final path is untouched.
    """
    try:
        os.unlink(paths.tmp_path)
    except FileNotFoundError:
        pass
    except OSError as e:
        raise EncodeFailure(f"Could not remove stale {paths.tmp_path}: {e.strerror}") from e

    encode(paths.tmp_path)

    try:
        os.replace(paths.tmp_path, paths.final_path)
    except OSError as e:
        raise RenameFailure(f"Could not rename {paths.tmp_path} to {paths.final_path}: {e.strerror}") from e
    logger.debug(f"Renamed {paths.tmp_path} -> {paths.final_path}")


def process_file(input_path: str, request: ExtractionRequest, config: ExtractConfig) -> ProcessingResult:
    """Run the whole pipeline for one input file. Never raises X3FExtractError."""
    logger = create_logger(os.path.basename(input_path))

    try:
        paths = build_paths(input_path, request.output_dir, request.extension)
        plan = resolve_plan(request)

        logger.info(f"READ THE X3F FILE {input_path}")
        with X3FContainer.open(input_path) as container:
            load_sections(container, plan)
            commit(
                paths,
                lambda tmp_path: dispatch(container, plan, tmp_path, config, logger),
                logger,
            )
    except X3FExtractError as e:
        logger.error(f"❌ {e}")
        return ProcessingResult(path=input_path, succeeded=False, error_kind=e.kind, message=str(e))

    logger.success(f"✅ Wrote {paths.final_path}")
    return ProcessingResult(path=input_path, succeeded=True)


def process_files(
    input_paths: Sequence[str],
    request: ExtractionRequest,
    config: Optional[ExtractConfig] = None,
) -> RunResult:
    """Process every input in order and aggregate the outcome."""
    if config is None:
        config = ExtractConfig()
    logger = create_logger()
    run = RunResult()

    for input_path in input_paths:
        run.add(process_file(input_path, request, config))

    if run.no_files:
        logger.error("No files given")

    logger.info(f"Files processed: {run.files_processed}\terrors: {run.error_count}")
    return run
