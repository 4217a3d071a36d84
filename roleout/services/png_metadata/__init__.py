"""
PNG Metadata
============

Byte-level PNG chunk codec and JSON-in-tEXt metadata transcoding.

Supports:
- Embedding base64 JSON under a keyword before the IEND chunk
- Extraction with fallback for legacy raw-JSON chunks
- Card format detection (SillyTavern V1/V2/V3, RoleOut personas)
"""

from .chunks import (
    PNG_SIGNATURE,
    InvalidSignatureError,
    MissingTerminalChunkError,
    PngChunk,
    PngFormatError,
    build_chunk,
    crc32,
    insert_before_terminal,
    parse_chunks,
    read_tagged_text,
    remove_tagged_text,
    verify_signature,
)
from .format_detector import CardFormat, FormatDetector
from .metadata_handler import (
    CHARACTER_KEYWORD,
    CHARACTER_V3_KEYWORD,
    MISSING,
    PERSONA_KEYWORD,
    MetadataEnvelope,
    PNGMetadataHandler,
    decode,
    embed_metadata,
    encode,
    extract_metadata,
    find_metadata,
)

__all__ = [
    'PNG_SIGNATURE',
    'InvalidSignatureError',
    'MissingTerminalChunkError',
    'PngChunk',
    'PngFormatError',
    'build_chunk',
    'crc32',
    'insert_before_terminal',
    'parse_chunks',
    'read_tagged_text',
    'remove_tagged_text',
    'verify_signature',
    'CardFormat',
    'FormatDetector',
    'CHARACTER_KEYWORD',
    'CHARACTER_V3_KEYWORD',
    'MISSING',
    'PERSONA_KEYWORD',
    'MetadataEnvelope',
    'PNGMetadataHandler',
    'decode',
    'embed_metadata',
    'encode',
    'extract_metadata',
    'find_metadata',
]
