"""
Catalog of exportable items on the SillyTavern host.

Maps the host's loosely shaped character, chat and persona records onto
typed summaries. Ids are positional indexes into the host's lists, as the
selection UI used them.
"""

import logging
from typing import Any, Dict, List, Optional, TYPE_CHECKING

from pydantic import BaseModel

if TYPE_CHECKING:
    from roleout.services.sillytavern_client import SillyTavernClient

logger = logging.getLogger(__name__)


class CharacterSummary(BaseModel):
    """Exportable character."""
    id: int
    name: str
    avatar: Optional[str] = None
    has_avatar: bool = False
    has_alt_greetings: bool = False
    has_lorebook: bool = False
    lorebook_name: Optional[str] = None

    @classmethod
    def from_host(cls, index: int, raw: Dict[str, Any]) -> "CharacterSummary":
        data = raw.get("data") if isinstance(raw.get("data"), dict) else {}

        alt_greetings = data.get("alternate_greetings") or raw.get("alternate_greetings") or []
        has_alt_greetings = isinstance(alt_greetings, list) and len(alt_greetings) > 0

        book = data.get("character_book") or raw.get("character_book")
        has_lorebook = bool(book) and isinstance(book, dict) and (
            (isinstance(book.get("entries"), list) and len(book["entries"]) > 0)
            or bool(book.get("name"))
        )

        return cls(
            id=index,
            name=raw.get("name") or data.get("name") or "Unnamed Character",
            avatar=raw.get("avatar"),
            has_avatar=bool(raw.get("avatar")),
            has_alt_greetings=has_alt_greetings,
            has_lorebook=has_lorebook,
            lorebook_name=(book.get("name") or "Unnamed Lorebook") if has_lorebook else None
        )


class ChatSummary(BaseModel):
    """Exportable chat file."""
    id: int
    name: str
    character: str = "Unknown Character"
    avatar: Optional[str] = None
    last_message: str = "[Empty chat]"
    message_count: int = 0
    file_size: str = "0kb"

    @classmethod
    def from_host(
        cls,
        index: int,
        raw: Dict[str, Any],
        characters_by_avatar: Dict[str, CharacterSummary]
    ) -> "ChatSummary":
        character_name = "Unknown Character"
        avatar = None

        if raw.get("group"):
            character_name = "Group Chat"
        elif raw.get("avatar") in characters_by_avatar:
            character_name = characters_by_avatar[raw["avatar"]].name
            avatar = raw["avatar"]

        return cls(
            id=index,
            name=raw.get("file_name") or raw.get("name") or "Unnamed Chat",
            character=character_name,
            avatar=avatar,
            last_message=raw.get("mes") or "[Empty chat]",
            message_count=raw.get("chat_items") or 0,
            file_size=raw.get("file_size") or "0kb"
        )


class PersonaSummary(BaseModel):
    """Exportable user persona."""
    id: int
    name: str
    avatar: str
    description: str = ""
    title: str = ""
    is_default: bool = False


def personas_from_settings(settings: Dict[str, Any]) -> List[PersonaSummary]:
    """Build persona summaries from the host's power_user settings block."""
    power_user = settings.get("power_user") or {}
    personas = power_user.get("personas")
    if not isinstance(personas, dict):
        logger.warning("Personas not available in host settings")
        return []

    descriptions = power_user.get("persona_descriptions") or {}
    default_persona = power_user.get("default_persona")

    summaries = []
    for index, (avatar, name) in enumerate(personas.items()):
        desc = descriptions.get(avatar) or {}
        summaries.append(PersonaSummary(
            id=index,
            name=name or "[Unnamed Persona]",
            avatar=avatar,
            description=desc.get("description") or "",
            title=desc.get("title") or "",
            is_default=avatar == default_persona
        ))
    return summaries


class Catalog:
    """Lists characters, chats and personas from the host, caching each list."""

    def __init__(self, client: "SillyTavernClient"):
        self.client = client
        self._characters: Optional[List[CharacterSummary]] = None
        self._chats: Optional[List[ChatSummary]] = None
        self._personas: Optional[List[PersonaSummary]] = None

    async def characters(self, refresh: bool = False) -> List[CharacterSummary]:
        if self._characters is None or refresh:
            raw = await self.client.list_characters()
            self._characters = [CharacterSummary.from_host(i, c) for i, c in enumerate(raw)]
            logger.info(f"Loaded {len(self._characters)} character(s)")
        return self._characters

    async def chats(self, refresh: bool = False) -> List[ChatSummary]:
        if self._chats is None or refresh:
            characters = await self.characters()
            by_avatar = {c.avatar: c for c in characters if c.avatar}
            raw = await self.client.list_recent_chats()
            self._chats = [ChatSummary.from_host(i, c, by_avatar) for i, c in enumerate(raw)]
            logger.info(f"Loaded {len(self._chats)} chat(s)")
        return self._chats

    async def personas(self, refresh: bool = False) -> List[PersonaSummary]:
        if self._personas is None or refresh:
            settings = await self.client.get_settings()
            self._personas = personas_from_settings(settings)
            logger.info(f"Loaded {len(self._personas)} persona(s)")
        return self._personas

    async def counts(self) -> Dict[str, int]:
        return {
            "characters": len(await self.characters()),
            "chats": len(await self.chats()),
            "personas": len(await self.personas()),
        }

    @staticmethod
    def select(items: List[Any], ids: List[int]) -> List[Any]:
        """Pick items by id in the requested order, dropping unknown ids."""
        by_id = {item.id: item for item in items}
        selected = []
        for item_id in ids:
            if item_id in by_id:
                selected.append(by_id[item_id])
            else:
                logger.warning(f"No item with id {item_id}, skipping")
        return selected
