"""
Batch Export
============

Bounded-concurrency export of characters, chats and personas.
"""

from .models import (
    BatchExportError,
    BatchReport,
    ExportArtifact,
    ExportBundle,
    ExportError,
    ExportJob,
    ExportResult,
    FetchedResource,
    FetchKind,
    FetchSpec,
    JobError,
    JobKind,
    JobStatus,
)
from .orchestrator import BatchExportOrchestrator, ResourceFetcher, collect
from .jobs import (
    avatar_filename,
    build_character_job,
    build_chat_job,
    build_persona_job,
    persona_metadata,
    safe_filename,
    timestamp_for_filename,
)
from .packager import ZipPackager

__all__ = [
    'BatchExportError',
    'BatchReport',
    'ExportArtifact',
    'ExportBundle',
    'ExportError',
    'ExportJob',
    'ExportResult',
    'FetchedResource',
    'FetchKind',
    'FetchSpec',
    'JobError',
    'JobKind',
    'JobStatus',
    'BatchExportOrchestrator',
    'ResourceFetcher',
    'collect',
    'avatar_filename',
    'build_character_job',
    'build_chat_job',
    'build_persona_job',
    'persona_metadata',
    'safe_filename',
    'timestamp_for_filename',
    'ZipPackager',
]
