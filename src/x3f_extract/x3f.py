"""
X3F container reader.

Parses the file header, the section directory and the image section
headers when a container is opened. Section payloads are only read on
request through X3FContainer.load(); decoding of raw sensor data is left to
LibRaw (rawpy).
"""
import os
import struct
from dataclasses import dataclass
from enum import Enum
from typing import List, Optional, Tuple

import rawpy

from .config import X3F_VERSION_2_1, X3F_VERSION_2_3, X3F_VERSION_3_0, X3F_VERSION_4_0
from .errors import OpenFailure, SectionLoadFailure


class Section(Enum):
    PREVIEW = "preview"
    METADATA = "metadata"
    RAW_DECODED = "raw-decoded"
    RAW_UNDECODED = "raw-undecoded"


# Section identifiers
X3F_FOVb = b'FOVb'
X3F_SECd = b'SECd'
X3F_SECi = b'SECi'
X3F_SECp = b'SECp'
X3F_SECc = b'SECc'

# Directory entry types
X3F_PROP = 'PROP'
X3F_IMAG = 'IMAG'
X3F_IMA2 = 'IMA2'
X3F_CAMF = 'CAMF'

# Image type formats
IMAGE_THUMB_JPEG = 0x00020012

# Raw image type formats, in lookup order
RAW_TYPES = {
    0x0003001e: 'TRUE',
    0x0001001e: 'MERRILL',
    0x00010023: 'QUATTRO',
    0x00010025: 'SDQ',
    0x00010027: 'SDQH',
    0x00010029: 'SDQH2',
    0x00030005: 'HUFFMAN_X530',
    0x00030006: 'HUFFMAN_10BIT',
}

SIZE_UNIQUE_IDENTIFIER = 16
SIZE_WHITE_BALANCE = 32
SIZE_COLOR_MODE = 32
NUM_EXT_DATA_2_1 = 32
NUM_EXT_DATA_3_0 = 64

HEADER_BASE = struct.Struct('<4sI16s')
HEADER_GEOMETRY = struct.Struct('<IIII')
DIRECTORY_HEADER = struct.Struct('<4sII')
DIRECTORY_ENTRY = struct.Struct('<II4s')
IMAGE_HEADER = struct.Struct('<4sIIIII')
PROPERTY_HEADER = struct.Struct('<4sIIIII')
CAMF_HEADER = struct.Struct('<4sIIIIII')


@dataclass
class X3FHeader:
    version: int
    unique_identifier: bytes
    mark_bits: int = 0
    columns: int = 0
    rows: int = 0
    rotation: int = 0
    white_balance: str = ""
    color_mode: str = ""
    extended_types: bytes = b""
    extended_data: Tuple[float, ...] = ()

    @property
    def version_string(self) -> str:
        return f"{self.version >> 16}.{self.version & 0xffff}"


@dataclass
class ImageHeader:
    version: int
    type_format: int
    columns: int
    rows: int
    row_stride: int


@dataclass
class CamfHeader:
    version: int
    type: int
    words: Tuple[int, int, int, int]


@dataclass
class DirectoryEntry:
    offset: int
    size: int
    type: str
    image: Optional[ImageHeader] = None

    @property
    def payload_offset(self) -> int:
        if self.image is not None:
            return self.offset + IMAGE_HEADER.size
        return self.offset


def _cstring(raw: bytes) -> str:
    return raw.split(b'\0', 1)[0].decode('latin-1')


class X3FContainer:
    """
    An open X3F file.

    Use as a context manager; close() releases both the file object and the
    LibRaw handle of a decoded raw section.
    """

    def __init__(self, path: str, fileobj, header: X3FHeader, entries: List[DirectoryEntry]):
        self.path = path
        self.header = header
        self.entries = entries
        self._file = fileobj

        self.thumbnail: Optional[bytes] = None
        self.properties: Optional[List[Tuple[str, str]]] = None
        self.camf_header: Optional[CamfHeader] = None
        self.camf: Optional[bytes] = None
        self.image_block: Optional[bytes] = None
        self.raw = None

    @classmethod
    def open(cls, path: str) -> "X3FContainer":
        try:
            f = open(path, 'rb')
        except OSError as e:
            raise OpenFailure(f"Could not open infile {path}: {e.strerror}") from e

        try:
            header = _read_header(f)
            entries = _read_directory(f)
        except (SectionLoadFailure, struct.error, ValueError, OSError) as e:
            f.close()
            raise OpenFailure(f"Could not read infile {path}: {e}") from e
        return cls(path, f, header, entries)

    @property
    def version(self) -> int:
        return self.header.version

    # --- Section lookup ---

    def _find_image(self, type_format: int) -> Optional[DirectoryEntry]:
        for entry in self.entries:
            if entry.image is not None and entry.image.type_format == type_format:
                return entry
        return None

    def _find_type(self, entry_type: str) -> Optional[DirectoryEntry]:
        for entry in self.entries:
            if entry.type == entry_type:
                return entry
        return None

    def get_thumb_jpeg(self) -> Optional[DirectoryEntry]:
        return self._find_image(IMAGE_THUMB_JPEG)

    def get_prop(self) -> Optional[DirectoryEntry]:
        return self._find_type(X3F_PROP)

    def get_camf(self) -> Optional[DirectoryEntry]:
        return self._find_type(X3F_CAMF)

    def get_raw(self) -> Optional[DirectoryEntry]:
        for type_format in RAW_TYPES:
            entry = self._find_image(type_format)
            if entry is not None:
                return entry
        return None

    # --- Loading ---

    def load(self, section: Section):
        """Load one section kind. Raises SectionLoadFailure."""
        if section is Section.PREVIEW:
            entry = self.get_thumb_jpeg()
            if entry is None:
                raise SectionLoadFailure("Could not find JPEG thumbnail")
            self.thumbnail = self._payload(entry)
        elif section is Section.METADATA:
            self._load_camf()
            # Quattro containers have no PROP section
            entry = self.get_prop()
            if entry is not None:
                self.properties = self._parse_properties(entry)
        elif section is Section.RAW_DECODED:
            self._require_raw()
            try:
                self.raw = rawpy.imread(self.path)
            except (rawpy.LibRawError, OSError) as e:
                raise SectionLoadFailure(f"Could not load RAW: {e}") from e
        elif section is Section.RAW_UNDECODED:
            self.image_block = self._payload(self._require_raw())
        else:
            raise SectionLoadFailure(f"Unknown section {section}")

    def _require_raw(self) -> DirectoryEntry:
        entry = self.get_raw()
        if entry is None:
            raise SectionLoadFailure("Could not find any matching RAW format")
        return entry

    def _load_camf(self):
        entry = self.get_camf()
        if entry is None:
            raise SectionLoadFailure("Could not find CAMF")
        if entry.size < CAMF_HEADER.size:
            raise SectionLoadFailure("Could not load CAMF: section too small")
        ident, version, camf_type, *words = CAMF_HEADER.unpack(
            _read_at(self._file, entry.offset, CAMF_HEADER.size))
        if ident != X3F_SECc:
            raise SectionLoadFailure(f"Could not load CAMF: bad identifier {ident!r}")
        self.camf_header = CamfHeader(version=version, type=camf_type, words=tuple(words))
        self.camf = _read_at(self._file, entry.offset + CAMF_HEADER.size, entry.size - CAMF_HEADER.size)

    def _parse_properties(self, entry: DirectoryEntry) -> List[Tuple[str, str]]:
        ident, _version, count, _char_format, _reserved, total_length = PROPERTY_HEADER.unpack(
            _read_at(self._file, entry.offset, PROPERTY_HEADER.size))
        if ident != X3F_SECp:
            raise SectionLoadFailure(f"Could not load PROP: bad identifier {ident!r}")

        table_size = 8 * count
        if PROPERTY_HEADER.size + table_size + 2 * total_length > entry.size:
            raise SectionLoadFailure("Could not load PROP: property table exceeds section")
        table = struct.unpack(f'<{2 * count}I',
                              _read_at(self._file, entry.offset + PROPERTY_HEADER.size, table_size))
        raw_text = _read_at(self._file, entry.offset + PROPERTY_HEADER.size + table_size, 2 * total_length)
        text = raw_text.decode('utf-16-le', errors='replace')

        def string_at(offset):
            end = text.find('\0', offset)
            return text[offset:] if end < 0 else text[offset:end]

        return [(string_at(table[2 * i]), string_at(table[2 * i + 1])) for i in range(count)]

    def _payload(self, entry: DirectoryEntry) -> bytes:
        start = entry.payload_offset
        return _read_at(self._file, start, entry.offset + entry.size - start)

    # --- Lifetime ---

    def close(self):
        if self.raw is not None:
            self.raw.close()
            self.raw = None
        if self._file is not None:
            self._file.close()
            self._file = None

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()
        return False


def _read_at(f, offset: int, size: int) -> bytes:
    f.seek(offset)
    data = f.read(size)
    if len(data) != size:
        raise SectionLoadFailure(f"Unexpected end of file reading {size} bytes at offset {offset}")
    return data


def _read_header(f) -> X3FHeader:
    ident, version, unique_identifier = HEADER_BASE.unpack(_read_at(f, 0, HEADER_BASE.size))
    if ident != X3F_FOVb:
        raise ValueError(f"not an X3F file (identifier {ident!r})")

    header = X3FHeader(version=version, unique_identifier=unique_identifier)
    # Layout of the remaining header fields is only known before 4.0
    if version >= X3F_VERSION_4_0:
        return header

    pos = HEADER_BASE.size
    header.mark_bits, header.columns, header.rows, header.rotation = HEADER_GEOMETRY.unpack(
        _read_at(f, pos, HEADER_GEOMETRY.size))
    pos += HEADER_GEOMETRY.size

    if version >= X3F_VERSION_2_1:
        num_ext_data = NUM_EXT_DATA_3_0 if version >= X3F_VERSION_3_0 else NUM_EXT_DATA_2_1
        header.white_balance = _cstring(_read_at(f, pos, SIZE_WHITE_BALANCE))
        pos += SIZE_WHITE_BALANCE
        if version >= X3F_VERSION_2_3:
            header.color_mode = _cstring(_read_at(f, pos, SIZE_COLOR_MODE))
            pos += SIZE_COLOR_MODE
        header.extended_types = _read_at(f, pos, num_ext_data)
        pos += num_ext_data
        header.extended_data = struct.unpack(f'<{num_ext_data}f', _read_at(f, pos, 4 * num_ext_data))
    return header


def _read_directory(f) -> List[DirectoryEntry]:
    file_size = os.fstat(f.fileno()).st_size
    (directory_offset,) = struct.unpack('<I', _read_at(f, file_size - 4, 4))

    ident, _version, count = DIRECTORY_HEADER.unpack(_read_at(f, directory_offset, DIRECTORY_HEADER.size))
    if ident != X3F_SECd:
        raise ValueError(f"bad directory identifier {ident!r}")
    if directory_offset + DIRECTORY_HEADER.size + count * DIRECTORY_ENTRY.size > file_size:
        raise ValueError(f"directory with {count} entries exceeds file size")

    entries = []
    for i in range(count):
        offset, size, raw_type = DIRECTORY_ENTRY.unpack(_read_at(
            f, directory_offset + DIRECTORY_HEADER.size + i * DIRECTORY_ENTRY.size, DIRECTORY_ENTRY.size))
        if offset + size > file_size:
            raise ValueError(f"section {i} exceeds file size")
        entry = DirectoryEntry(offset=offset, size=size, type=raw_type.decode('latin-1'))

        if entry.type in (X3F_IMAG, X3F_IMA2):
            if size < IMAGE_HEADER.size:
                raise ValueError(f"image section {i} too small")
            image_ident, *fields = IMAGE_HEADER.unpack(_read_at(f, offset, IMAGE_HEADER.size))
            if image_ident != X3F_SECi:
                raise ValueError(f"bad image section identifier {image_ident!r}")
            entry.image = ImageHeader(*fields)
        entries.append(entry)
    return entries
