"""
x3f-extract - X3F raw container extraction and conversion
"""

from .config import VERSION, ExtractConfig
from .core import (
    ColorEncoding,
    ExtractionPlan,
    ExtractionRequest,
    OutputKind,
    SpatialGain,
    build_request,
    resolve_plan,
)
from .orchestrator import ProcessingResult, RunResult, process_file, process_files
from .paths import PathPair, build_paths

__version__ = VERSION

__all__ = [
    # Configuration
    'ExtractConfig',
    # Planning
    'ColorEncoding',
    'ExtractionPlan',
    'ExtractionRequest',
    'OutputKind',
    'SpatialGain',
    'build_request',
    'resolve_plan',
    # Paths
    'PathPair',
    'build_paths',
    # Running
    'ProcessingResult',
    'RunResult',
    'process_file',
    'process_files',
]
