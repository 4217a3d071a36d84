"""
Export job builders.

Turn selected characters, chats and personas into ``ExportJob``s for the
orchestrator, and name their output files.
"""

import logging
import re
import time
from datetime import datetime
from typing import Any, Dict, List, Optional

from roleout.services.catalog import CharacterSummary, ChatSummary, PersonaSummary
from roleout.services.png_metadata import PERSONA_KEYWORD, embed_metadata

from .models import (
    ExportArtifact,
    ExportJob,
    FetchedResource,
    FetchKind,
    FetchSpec,
    JobError,
    JobKind,
)

logger = logging.getLogger(__name__)

EXPORTED_BY = "RoleOut"
CHARACTER_FORMATS = ("png", "json")


def safe_filename(path: Optional[str], extension: str) -> str:
    """
    Derive a safe filename from an avatar or chat path.

    Drops directories and the final extension, replaces anything outside
    ``[a-zA-Z0-9_-]`` with underscores and appends the new extension.
    """
    suffix = f".{extension}" if extension else ""
    if not path:
        return f"character_{int(time.time() * 1000)}{suffix}"

    filename = re.split(r"[/\\]", path)[-1]
    stem = re.sub(r"\.[^.]+$", "", filename)
    safe = re.sub(r"[^a-zA-Z0-9_-]", "_", stem)
    return f"{safe}{suffix}"


def avatar_filename(avatar: Optional[str]) -> str:
    """
    Original avatar filename with any directory parts dropped.

    Raises:
        JobError: If nothing usable is left (empty, '.' or '..')
    """
    name = re.split(r"[/\\]", avatar or "")[-1]
    if name in ("", ".", ".."):
        raise JobError(f"Invalid avatar filename: {avatar!r}")
    return name


def timestamp_for_filename(now: Optional[datetime] = None) -> str:
    """Format a timestamp as YYYY-MM-DD_HH-MM-SS."""
    return (now or datetime.now()).strftime("%Y-%m-%d_%H-%M-%S")


def build_character_job(character: CharacterSummary, format: str = "png") -> ExportJob:
    """Export one character card through the host's character export endpoint."""
    if format not in CHARACTER_FORMATS:
        raise ValueError(f"Unsupported character export format: {format}")

    spec = FetchSpec(
        kind=FetchKind.CHARACTER_EXPORT,
        resource_id=character.avatar or "",
        filename=safe_filename(character.avatar, format),
        params={"format": format, "avatar_url": character.avatar}
    )
    return ExportJob(
        id=f"character:{character.id}",
        kind=JobKind.SINGLE_RESOURCE,
        fetch_specs=[spec],
        label=character.name
    )


def chat_export_spec(chat: ChatSummary) -> FetchSpec:
    return FetchSpec(
        kind=FetchKind.CHAT_EXPORT,
        resource_id=chat.name,
        filename=safe_filename(chat.name, "jsonl"),
        params={
            "file": chat.name,
            "avatar_url": chat.avatar,
            "format": "jsonl",
            "exportfilename": f"{chat.name}.jsonl",
        }
    )


def build_chat_job(
    chat: ChatSummary,
    include_character: bool = True,
    character_required: bool = False
) -> ExportJob:
    """
    Export a chat as JSONL, optionally bundled with its character card.

    Unless ``character_required`` is set, a failed card fetch still exports
    the chat. The card is shared across jobs so a character referenced by
    several selected chats is packaged once.
    """
    specs = [chat_export_spec(chat)]

    if include_character and chat.avatar:
        specs.append(FetchSpec(
            kind=FetchKind.CHARACTER_EXPORT,
            resource_id=chat.avatar,
            filename=safe_filename(chat.avatar, "png"),
            params={"format": "png", "avatar_url": chat.avatar},
            required=character_required,
            shared=True
        ))

    return ExportJob(
        id=f"chat:{chat.id}",
        kind=JobKind.COMPOSITE_BUNDLE if len(specs) > 1 else JobKind.SINGLE_RESOURCE,
        fetch_specs=specs,
        label=chat.name
    )


def persona_metadata(persona: PersonaSummary, exported_at: Optional[datetime] = None) -> Dict[str, Any]:
    """Metadata object embedded in an exported persona avatar."""
    return {
        "name": persona.name,
        "description": persona.description or "",
        "title": persona.title or "",
        "isDefault": persona.is_default,
        "exportedAt": (exported_at or datetime.now()).isoformat(),
        "exportedBy": EXPORTED_BY,
    }


def build_persona_job(persona: PersonaSummary, exported_at: Optional[datetime] = None) -> ExportJob:
    """Fetch a persona avatar and embed the persona's metadata in it."""
    metadata = persona_metadata(persona, exported_at)

    def embed(resources: List[FetchedResource]) -> List[ExportArtifact]:
        if not resources or resources[0].data is None:
            raise JobError(f"Persona {persona.name} has no avatar data")
        filename = avatar_filename(persona.avatar)
        png_data = embed_metadata(resources[0].data, PERSONA_KEYWORD, metadata)
        # Personas keep their original avatar filename
        return [ExportArtifact(filename=filename, data=png_data)]

    spec = FetchSpec(
        kind=FetchKind.RESOURCE_BYTES,
        resource_id=persona.avatar,
        filename=re.split(r"[/\\]", persona.avatar)[-1]
    )
    return ExportJob(
        id=f"persona:{persona.id}",
        kind=JobKind.SINGLE_RESOURCE,
        fetch_specs=[spec],
        label=f"Persona {persona.name}",
        post_process=embed
    )
