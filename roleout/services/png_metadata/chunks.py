"""
PNG Chunk Codec
===============

Structural parsing and surgical mutation of PNG chunk streams.

Image data is never decoded: chunks are located by walking the
length/type/payload/CRC framing, and new chunks are spliced in as raw bytes
so every other byte of the original file is preserved.
"""

import logging
import struct
from dataclasses import dataclass
from typing import List, Optional

logger = logging.getLogger(__name__)

PNG_SIGNATURE = b"\x89PNG\r\n\x1a\n"

TERMINAL_CHUNK = "IEND"
TEXT_CHUNK = "tEXt"

# length (4) + type (4) + crc (4)
CHUNK_OVERHEAD = 12

_CRC_POLYNOMIAL = 0xEDB88320


def _make_crc_table() -> tuple:
    table = []
    for n in range(256):
        c = n
        for _ in range(8):
            if c & 1:
                c = _CRC_POLYNOMIAL ^ (c >> 1)
            else:
                c >>= 1
        table.append(c)
    return tuple(table)


CRC_TABLE = _make_crc_table()


class PngFormatError(ValueError):
    """Base exception for structurally unusable PNG data."""
    pass


class InvalidSignatureError(PngFormatError):
    """The data does not start with the PNG signature."""
    pass


class MissingTerminalChunkError(PngFormatError):
    """The chunk stream has no IEND chunk to insert before."""
    pass


@dataclass(frozen=True)
class PngChunk:
    """A chunk snapshot taken from a parse pass."""
    chunk_type: str
    payload: bytes
    offset: int  # start of the length field in the source stream

    @property
    def length(self) -> int:
        return len(self.payload)

    @property
    def total_size(self) -> int:
        """Size of the chunk in the stream including framing."""
        return CHUNK_OVERHEAD + len(self.payload)


def crc32(data: bytes) -> int:
    """Compute the CRC32 used by PNG chunk trailers."""
    crc = 0xFFFFFFFF
    for byte in data:
        crc = CRC_TABLE[(crc ^ byte) & 0xFF] ^ (crc >> 8)
    return crc ^ 0xFFFFFFFF


def is_ancillary(chunk_type: str) -> bool:
    """Ancillary chunks have a lowercase first letter and may be ignored by readers."""
    return bool(chunk_type) and chunk_type[0].islower()


def verify_signature(data: bytes) -> bool:
    """Check the first 8 bytes against the PNG magic sequence."""
    return data[:len(PNG_SIGNATURE)] == PNG_SIGNATURE


def parse_chunks(data: bytes) -> List[PngChunk]:
    """
    Walk the chunk stream of a PNG file.

    CRCs are not validated. Parsing stops after the IEND chunk even if
    trailing bytes remain, and stops early if a chunk would run past the end
    of the buffer.

    Args:
        data: Complete PNG file contents

    Returns:
        Chunks in file order

    Raises:
        InvalidSignatureError: If the PNG signature is missing
    """
    if not verify_signature(data):
        raise InvalidSignatureError("Invalid PNG signature")

    chunks: List[PngChunk] = []
    offset = len(PNG_SIGNATURE)
    total = len(data)

    while offset < total:
        if offset + 8 > total:
            logger.debug(f"Truncated chunk header at offset {offset}, stopping")
            break

        (length,) = struct.unpack(">I", data[offset:offset + 4])
        chunk_type = data[offset + 4:offset + 8].decode("latin-1")
        payload_end = offset + 8 + length

        if payload_end > total:
            logger.debug(f"Chunk '{chunk_type}' at offset {offset} runs past end of data, stopping")
            break

        chunks.append(PngChunk(chunk_type, bytes(data[offset + 8:payload_end]), offset))
        offset = payload_end + 4

        if chunk_type == TERMINAL_CHUNK:
            break

    return chunks


def build_chunk(chunk_type: str, payload: bytes) -> bytes:
    """
    Serialize a chunk as length | type | payload | crc.

    Args:
        chunk_type: 4-letter ASCII chunk tag (e.g. 'tEXt')
        payload: Chunk data

    Returns:
        Framed chunk bytes
    """
    if len(chunk_type) != 4 or not chunk_type.isascii() or not chunk_type.isalpha():
        raise ValueError(f"Chunk type must be 4 ASCII letters, got {chunk_type!r}")

    type_bytes = chunk_type.encode("ascii")
    payload = bytes(payload)
    crc = crc32(type_bytes + payload)
    return struct.pack(">I", len(payload)) + type_bytes + payload + struct.pack(">I", crc)


def find_terminal_chunk(chunks: List[PngChunk]) -> Optional[PngChunk]:
    for chunk in chunks:
        if chunk.chunk_type == TERMINAL_CHUNK:
            return chunk
    return None


def insert_before_terminal(original: bytes, new_chunk: bytes) -> bytes:
    """
    Splice a framed chunk in immediately before IEND.

    Raises:
        InvalidSignatureError: If the PNG signature is missing
        MissingTerminalChunkError: If no IEND chunk is present
    """
    terminal = find_terminal_chunk(parse_chunks(original))
    if terminal is None:
        raise MissingTerminalChunkError("PNG missing IEND chunk")

    return original[:terminal.offset] + new_chunk + original[terminal.offset:]


def split_text_payload(payload: bytes) -> Optional[tuple]:
    """Split a tEXt payload into (keyword, text) on the first null byte."""
    separator = payload.find(b"\x00")
    if separator == -1:
        return None
    keyword = payload[:separator].decode("latin-1")
    text = payload[separator + 1:].decode("latin-1")
    return keyword, text


def read_tagged_text(chunk: PngChunk, expected_keyword: str) -> Optional[str]:
    """
    Return the text of a tEXt chunk if it carries the expected keyword.

    A different keyword, a non-text chunk or a payload without a separator
    all yield None.
    """
    if chunk.chunk_type != TEXT_CHUNK:
        return None

    parts = split_text_payload(chunk.payload)
    if parts is None:
        return None

    keyword, text = parts
    if keyword != expected_keyword:
        return None
    return text


def remove_tagged_text(original: bytes, keyword: str) -> bytes:
    """
    Drop every tEXt chunk carrying ``keyword``.

    All other bytes are copied unchanged, including anything after IEND.
    """
    chunks = parse_chunks(original)
    kept = bytearray()
    cursor = 0
    removed = 0

    for chunk in chunks:
        if read_tagged_text(chunk, keyword) is None:
            continue
        kept += original[cursor:chunk.offset]
        cursor = chunk.offset + chunk.total_size
        removed += 1

    if not removed:
        return original

    kept += original[cursor:]
    logger.debug(f"Removed {removed} existing '{keyword}' tEXt chunk(s)")
    return bytes(kept)
