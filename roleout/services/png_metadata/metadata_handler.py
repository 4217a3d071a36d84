"""
PNG Metadata Handler
===================

Handles reading and writing JSON metadata in PNG tEXt chunks.

Values are stored as base64-encoded UTF-8 JSON, the convention used by
SillyTavern character cards. Files written by older exporters that stored
raw JSON text are still readable.
"""

import base64
import binascii
import json
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Iterable, Optional

from .chunks import (
    TEXT_CHUNK,
    PngChunk,
    build_chunk,
    insert_before_terminal,
    parse_chunks,
    read_tagged_text,
    remove_tagged_text,
)

logger = logging.getLogger(__name__)

CHARACTER_KEYWORD = "chara"
CHARACTER_V3_KEYWORD = "ccv3"
PERSONA_KEYWORD = "persona"

MAX_KEYWORD_LENGTH = 79

# Marks "no decodable chunk" so a stored JSON null stays distinguishable
MISSING = object()


@dataclass(frozen=True)
class MetadataEnvelope:
    """A decoded metadata value together with the keyword it was stored under."""
    keyword: str
    value: Any


def validate_keyword(keyword: str) -> None:
    """tEXt keywords are 1-79 printable Latin-1 characters."""
    if not keyword or len(keyword) > MAX_KEYWORD_LENGTH:
        raise ValueError(f"tEXt keyword must be 1-{MAX_KEYWORD_LENGTH} characters, got {len(keyword or '')}")
    for char in keyword:
        code = ord(char)
        if not (32 <= code <= 126 or 161 <= code <= 255):
            raise ValueError(f"Invalid character {char!r} in tEXt keyword {keyword!r}")


def encode(keyword: str, value: Any) -> bytes:
    """
    Build a tEXt chunk carrying a JSON value.

    Args:
        keyword: tEXt keyword (e.g. 'chara', 'persona')
        value: Any JSON-serializable value

    Returns:
        Framed tEXt chunk bytes
    """
    validate_keyword(keyword)
    json_text = json.dumps(value, ensure_ascii=False, separators=(",", ":"))
    encoded = base64.b64encode(json_text.encode("utf-8"))
    payload = keyword.encode("latin-1") + b"\x00" + encoded
    return build_chunk(TEXT_CHUNK, payload)


def _decode_text(text: str) -> str:
    try:
        return base64.b64decode(text, validate=True).decode("utf-8")
    except (binascii.Error, ValueError):
        # Legacy files stored the JSON itself; the tEXt text was read as
        # Latin-1 so the original UTF-8 bytes are recovered exactly.
        return text.encode("latin-1").decode("utf-8", errors="replace")


def decode(chunk: PngChunk, keyword: str, default: Any = None) -> Any:
    """
    Decode the JSON value stored in a tEXt chunk.

    Returns:
        The value, or ``default`` if the chunk does not carry ``keyword`` or
        its text is not valid JSON after both decode attempts. Pass
        ``MISSING`` to tell a stored JSON null apart from no value.
    """
    text = read_tagged_text(chunk, keyword)
    if text is None:
        return default

    json_text = _decode_text(text)
    try:
        return json.loads(json_text)
    except json.JSONDecodeError as e:
        logger.warning(f"Failed to parse '{keyword}' metadata as JSON: {e}")
        return default


def embed_metadata(png_data: bytes, keyword: str, value: Any, replace: bool = True) -> bytes:
    """
    Embed a JSON value in a PNG image.

    Args:
        png_data: Original PNG file data
        keyword: tEXt keyword
        value: JSON-serializable value
        replace: Remove existing chunks with the same keyword first

    Returns:
        PNG data with one extra tEXt chunk before IEND

    Raises:
        PngFormatError: If the PNG has a bad signature or no IEND chunk
    """
    chunk = encode(keyword, value)
    if replace:
        png_data = remove_tagged_text(png_data, keyword)
    result = insert_before_terminal(png_data, chunk)
    logger.debug(f"Embedded {len(chunk)} byte '{keyword}' chunk ({len(png_data)} -> {len(result)} bytes)")
    return result


def extract_metadata(png_data: bytes, keyword: str, default: Any = None) -> Any:
    """
    Extract the JSON value stored under ``keyword``.

    The first matching chunk in file order wins. Returns ``default`` when
    there is no such chunk or it cannot be decoded.

    Raises:
        PngFormatError: If the PNG signature is invalid
    """
    for chunk in parse_chunks(png_data):
        if read_tagged_text(chunk, keyword) is None:
            continue
        return decode(chunk, keyword, default)

    logger.debug(f"tEXt chunk with keyword '{keyword}' not found")
    return default


def find_metadata(png_data: bytes, keywords: Iterable[str]) -> Optional[MetadataEnvelope]:
    """Return the first keyword, in priority order, with a decodable value."""
    chunks = parse_chunks(png_data)
    for keyword in keywords:
        for chunk in chunks:
            if read_tagged_text(chunk, keyword) is None:
                continue
            value = decode(chunk, keyword, MISSING)
            if value is not MISSING:
                return MetadataEnvelope(keyword=keyword, value=value)
            break
    return None


class PNGMetadataHandler:
    """Handle PNG tEXt chunk operations for exported cards and personas."""

    @staticmethod
    def write_metadata(png_data: bytes, keyword: str, value: Any, replace: bool = True) -> bytes:
        return embed_metadata(png_data, keyword, value, replace=replace)

    @staticmethod
    def read_metadata(png_data: bytes, keyword: str, default: Any = None) -> Any:
        return extract_metadata(png_data, keyword, default)

    @staticmethod
    def list_text_keywords(png_data: bytes) -> list:
        """List the keywords of all tEXt chunks in file order."""
        keywords = []
        for chunk in parse_chunks(png_data):
            if chunk.chunk_type != TEXT_CHUNK:
                continue
            separator = chunk.payload.find(b"\x00")
            if separator != -1:
                keywords.append(chunk.payload[:separator].decode("latin-1"))
        return keywords

    @staticmethod
    def read_image(png_path: str) -> bytes:
        """
        Load PNG image data from file.

        Args:
            png_path: Path to PNG file

        Returns:
            PNG file data as bytes
        """
        try:
            return Path(png_path).read_bytes()
        except OSError as e:
            logger.error(f"Error reading PNG file '{png_path}': {e}")
            raise

    @staticmethod
    def save_image(png_data: bytes, output_path: str) -> None:
        """
        Save PNG data to file.

        Args:
            png_data: PNG file data as bytes
            output_path: Path to save PNG file
        """
        try:
            Path(output_path).write_bytes(png_data)
        except OSError as e:
            logger.error(f"Error saving PNG file to '{output_path}': {e}")
            raise
