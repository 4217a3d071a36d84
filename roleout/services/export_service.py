"""
Export Service

Exports selected characters, chats and personas from SillyTavern to disk,
either as single files or as timestamped ZIP archives.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Iterable, List, Optional, Tuple

from roleout.config.models import ExportConfig
from roleout.services.catalog import Catalog
from roleout.services.export import (
    BatchExportError,
    BatchExportOrchestrator,
    BatchReport,
    ExportArtifact,
    ExportJob,
    JobError,
    ZipPackager,
    build_character_job,
    build_chat_job,
    build_persona_job,
    safe_filename,
)
from roleout.services.export.orchestrator import ResultCallback
from roleout.services.sillytavern_client import SillyTavernClient

logger = logging.getLogger(__name__)


@dataclass
class ExportOutcome:
    """What an export wrote and how the batch went."""
    report: BatchReport
    archive_path: Optional[Path] = None
    skipped_duplicates: int = 0
    warnings: List[str] = field(default_factory=list)

    @property
    def partial(self) -> bool:
        return self.report.failed > 0


class ExportService:
    """
    Export SillyTavern content.

    Supports:
    - Characters (PNG cards or JSON) as a ZIP
    - Chats (JSONL) with their character cards, deduplicated, as a ZIP
    - Personas (avatar PNG with embedded persona metadata) as a ZIP
    - Single-item exports of each
    """

    def __init__(
        self,
        client: SillyTavernClient,
        config: Optional[ExportConfig] = None,
        catalog: Optional[Catalog] = None,
        on_result: Optional[ResultCallback] = None
    ):
        self.client = client
        self.config = config or ExportConfig()
        self.catalog = catalog or Catalog(client)
        self.packager = ZipPackager(sort_members=self.config.sort_archive_members)
        self.on_result = on_result

    @property
    def output_dir(self) -> Path:
        return Path(self.config.output_dir)

    def _orchestrator(self) -> BatchExportOrchestrator:
        return BatchExportOrchestrator(
            self.client,
            max_concurrent=self.config.max_concurrent_exports,
            job_timeout=self.config.job_timeout_seconds,
            on_result=self.on_result
        )

    async def _run_batch(
        self,
        jobs: List[ExportJob],
        archive_label: str,
        noun: str,
        cancel_event: Optional[asyncio.Event] = None
    ) -> ExportOutcome:
        logger.info(f"Batch export: {len(jobs)} {noun}(s)")
        bundle = await self._orchestrator().run_batch(jobs, cancel_event)
        report = bundle.report

        if report.all_failed:
            raise BatchExportError(f"No {noun}s were exported successfully", report)

        archive_path = self.packager.write(bundle.artifacts, self.output_dir, archive_label)
        logger.info(f"{report.summary(noun)} to {archive_path.name} ({len(bundle.artifacts)} files)")
        return ExportOutcome(
            report=report,
            archive_path=archive_path,
            skipped_duplicates=bundle.skipped_duplicates,
            warnings=bundle.warnings
        )

    @staticmethod
    def _nothing_selected(message: str, requested: int) -> BatchExportError:
        report = BatchReport(failed=requested, failure_reasons=[message])
        return BatchExportError(message, report)

    async def export_characters(
        self,
        character_ids: Iterable[int],
        format: Optional[str] = None,
        cancel_event: Optional[asyncio.Event] = None
    ) -> ExportOutcome:
        """
        Export multiple characters as a ZIP file.

        Raises:
            BatchExportError: If no valid character was selected or none exported
        """
        character_ids = list(character_ids)
        format = format or self.config.character_format
        characters = Catalog.select(await self.catalog.characters(), character_ids)
        if not characters:
            raise self._nothing_selected("No valid characters found to export", len(character_ids))

        jobs = [build_character_job(c, format) for c in characters]
        return await self._run_batch(jobs, "Characters", "character", cancel_event)

    async def export_chats(
        self,
        selections: Iterable[Tuple[int, bool]],
        cancel_event: Optional[asyncio.Event] = None
    ) -> ExportOutcome:
        """
        Export chats as a ZIP file.

        Args:
            selections: (chat_id, include_character) pairs
        """
        selections = list(selections)
        if not selections:
            raise self._nothing_selected("No chats selected for export", 0)

        include_by_id = dict(selections)
        chats = Catalog.select(await self.catalog.chats(), [chat_id for chat_id, _ in selections])
        if not chats:
            raise self._nothing_selected("No valid chats found to export", len(selections))

        jobs = [build_chat_job(chat, include_by_id[chat.id]) for chat in chats]
        return await self._run_batch(jobs, "Chats", "chat", cancel_event)

    async def export_personas(
        self,
        persona_ids: Iterable[int],
        cancel_event: Optional[asyncio.Event] = None
    ) -> ExportOutcome:
        """Export personas as a ZIP of PNG files with embedded metadata."""
        persona_ids = list(persona_ids)
        if not persona_ids:
            raise self._nothing_selected("No personas selected for export", 0)

        personas = Catalog.select(await self.catalog.personas(), persona_ids)
        if not personas:
            raise self._nothing_selected("No valid personas found to export", len(persona_ids))

        jobs = [build_persona_job(p) for p in personas]
        return await self._run_batch(jobs, "Personas", "persona", cancel_event)

    async def _run_single(self, job: ExportJob) -> List[ExportArtifact]:
        results = await self._orchestrator().run([job])
        result = results[0]
        if not result.succeeded:
            raise JobError(result.failure_reason)
        return result.artifacts

    def _write_file(self, artifact: ExportArtifact) -> Path:
        self.output_dir.mkdir(parents=True, exist_ok=True)
        path = self.output_dir / artifact.filename
        path.write_bytes(artifact.data)
        logger.info(f"Successfully exported {path.name}")
        return path

    async def export_character(self, character_id: int, format: Optional[str] = None) -> Path:
        """
        Export a single character card.

        Raises:
            JobError: If the character is unknown or the export failed
        """
        matches = Catalog.select(await self.catalog.characters(), [character_id])
        if not matches:
            raise JobError(f"Character with ID {character_id} not found in character list")

        artifacts = await self._run_single(build_character_job(matches[0], format or self.config.character_format))
        return self._write_file(artifacts[0])

    async def export_chat(self, chat_id: int, include_character: Optional[bool] = None) -> Path:
        """
        Export a single chat.

        With its character included the chat and card are zipped together;
        otherwise the JSONL file is written directly.
        """
        if include_character is None:
            include_character = self.config.include_character_with_chats

        matches = Catalog.select(await self.catalog.chats(), [chat_id])
        if not matches:
            raise JobError(f"Chat with ID {chat_id} not found")
        chat = matches[0]

        with_character = include_character and bool(chat.avatar)
        job = build_chat_job(chat, include_character=with_character, character_required=True)
        artifacts = await self._run_single(job)

        if not with_character:
            return self._write_file(artifacts[0])

        label = f"Chat_{safe_filename(chat.name, '')}"
        return self.packager.write(artifacts, self.output_dir, label)

    async def export_persona(self, persona_id: int) -> Path:
        """Export a single persona avatar with embedded metadata."""
        matches = Catalog.select(await self.catalog.personas(), [persona_id])
        if not matches:
            raise JobError("Persona not found")

        artifacts = await self._run_single(build_persona_job(matches[0]))
        return self._write_file(artifacts[0])
