"""
Card Format Detector
===================

Detects which kind of RoleOut/SillyTavern metadata a PNG carries.
"""

import logging
from enum import Enum
from typing import Any, Dict, Optional, Tuple

from .metadata_handler import (
    CHARACTER_KEYWORD,
    CHARACTER_V3_KEYWORD,
    PERSONA_KEYWORD,
    extract_metadata,
)

logger = logging.getLogger(__name__)


class CardFormat(Enum):
    """Supported embedded metadata formats."""
    SILLYTAVERN_V2 = "chara_card_v2"
    SILLYTAVERN_V3 = "chara_card_v3"
    SILLYTAVERN_V1 = "chara_card_v1"
    ROLEOUT_PERSONA = "roleout_persona"
    UNKNOWN = "unknown"


class FormatDetector:
    """Detect card format from PNG metadata."""

    @classmethod
    def detect(cls, png_data: bytes) -> Tuple[CardFormat, Optional[Dict[str, Any]]]:
        """
        Detect the metadata format and return the parsed payload.

        Args:
            png_data: PNG file data as bytes

        Returns:
            Tuple of (CardFormat, parsed_data_dict); the dict is None when
            nothing recognisable is embedded

        Raises:
            PngFormatError: If the data is not a PNG
        """
        # V3 cards carry a ccv3 chunk alongside the chara chunk
        v3_data = extract_metadata(png_data, CHARACTER_V3_KEYWORD)
        if isinstance(v3_data, dict) and v3_data.get("spec") == "chara_card_v3":
            return (CardFormat.SILLYTAVERN_V3, v3_data)

        chara_data = extract_metadata(png_data, CHARACTER_KEYWORD)
        if isinstance(chara_data, dict):
            spec = chara_data.get("spec", "")
            if spec == "chara_card_v3":
                return (CardFormat.SILLYTAVERN_V3, chara_data)
            if spec == "chara_card_v2" or "data" in chara_data:
                return (CardFormat.SILLYTAVERN_V2, chara_data)
            if "name" in chara_data:
                logger.info("Parsed character card without spec (possibly V1 format)")
                return (CardFormat.SILLYTAVERN_V1, chara_data)
            logger.warning("Character card missing required fields")

        persona_data = extract_metadata(png_data, PERSONA_KEYWORD)
        if isinstance(persona_data, dict) and "name" in persona_data:
            return (CardFormat.ROLEOUT_PERSONA, persona_data)

        logger.warning("No recognised card metadata found in PNG")
        return (CardFormat.UNKNOWN, None)

    @classmethod
    def get_format_name(cls, format: CardFormat) -> str:
        """Get human-readable format name."""
        names = {
            CardFormat.SILLYTAVERN_V1: "SillyTavern V1",
            CardFormat.SILLYTAVERN_V2: "SillyTavern V2",
            CardFormat.SILLYTAVERN_V3: "SillyTavern V3",
            CardFormat.ROLEOUT_PERSONA: "RoleOut Persona",
            CardFormat.UNKNOWN: "Unknown Format"
        }
        return names.get(format, "Unknown")

    @staticmethod
    def describe(format: CardFormat, data: Optional[Dict[str, Any]]) -> str:
        """One-line summary of a detected card for logs and the CLI."""
        if not data:
            return FormatDetector.get_format_name(format)
        inner = data.get("data") if isinstance(data.get("data"), dict) else data
        name = inner.get("name") or "unnamed"
        return f"{FormatDetector.get_format_name(format)}: {name}"
