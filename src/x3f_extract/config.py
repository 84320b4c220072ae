from dataclasses import dataclass

VERSION = "0.1.0"

# Default number of CAMF payload words printed per block in metadata dumps
DEFAULT_MAX_PRINTED_MATRIX_ELEMENTS = 100


def x3f_version(major: int, minor: int) -> int:
    return (major << 16) + minor


# X3F container versions
X3F_VERSION_2_1 = x3f_version(2, 1)
X3F_VERSION_2_3 = x3f_version(2, 3)
X3F_VERSION_3_0 = x3f_version(3, 0)
X3F_VERSION_4_0 = x3f_version(4, 0)


@dataclass(frozen=True)
class ExtractConfig:
    """Run-wide settings that are not part of a single extraction request."""
    log_level: str = "INFO"
    max_printed_matrix_elements: int = DEFAULT_MAX_PRINTED_MATRIX_ELEMENTS
    accelerated: bool = False
