"""Data types shared by export jobs, the orchestrator and the packager."""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, List, Optional


class JobKind(Enum):
    """Shape of the artifact a job produces."""
    SINGLE_RESOURCE = "single_resource"
    COMPOSITE_BUNDLE = "composite_bundle"


class FetchKind(Enum):
    """Host endpoint a fetch spec is served by."""
    RESOURCE_BYTES = "resource_bytes"      # raw file by identifier (user avatars)
    CHARACTER_EXPORT = "character_export"  # /api/characters/export
    CHAT_EXPORT = "chat_export"            # /api/chats/export, JSON {result}


class JobStatus(Enum):
    """Lifecycle of a single job."""
    QUEUED = "queued"
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


class ExportError(Exception):
    """Base exception for export failures."""
    pass


class JobError(ExportError):
    """A job could not produce its artifact."""
    pass


class BatchExportError(ExportError):
    """No job in a batch succeeded, or there was nothing to export."""

    def __init__(self, message: str, report: Optional["BatchReport"] = None):
        self.report = report
        super().__init__(message)


@dataclass(frozen=True)
class FetchSpec:
    """Descriptor of one remote fetch performed by a job."""
    kind: FetchKind
    resource_id: str
    filename: str
    params: Dict[str, Any] = field(default_factory=dict)
    required: bool = True
    shared: bool = False  # artifact may be referenced by several jobs


@dataclass
class FetchedResource:
    """Body returned for a fetch spec."""
    spec: FetchSpec
    data: Optional[bytes] = None
    text: Optional[str] = None

    def as_bytes(self) -> bytes:
        if self.data is not None:
            return self.data
        if self.text is not None:
            return self.text.encode("utf-8")
        raise JobError(f"No content fetched for {self.spec.resource_id}")


@dataclass(frozen=True)
class ExportArtifact:
    """A named byte blob ready for packaging."""
    filename: str
    data: bytes
    resource_id: Optional[str] = None  # set for blobs deduplicated across jobs


PostProcess = Callable[[List[FetchedResource]], List[ExportArtifact]]


@dataclass
class ExportJob:
    """Unit of orchestrator work."""
    id: str
    kind: JobKind
    fetch_specs: List[FetchSpec]
    label: str = ""
    post_process: Optional[PostProcess] = None
    status: JobStatus = JobStatus.QUEUED

    @property
    def display_name(self) -> str:
        return self.label or self.id


@dataclass
class ExportResult:
    """Outcome of one job."""
    job_id: str
    status: JobStatus
    label: str = ""
    artifacts: List[ExportArtifact] = field(default_factory=list)
    error: Optional[str] = None
    warnings: List[str] = field(default_factory=list)
    duration_seconds: float = 0.0

    @property
    def succeeded(self) -> bool:
        return self.status == JobStatus.SUCCEEDED

    @property
    def failure_reason(self) -> str:
        return f"{self.label or self.job_id}: {self.error or 'Unknown error'}"


@dataclass
class BatchReport:
    """Tally over all results of one orchestrator run."""
    succeeded: int = 0
    failed: int = 0
    failure_reasons: List[str] = field(default_factory=list)

    @property
    def total(self) -> int:
        return self.succeeded + self.failed

    @property
    def all_failed(self) -> bool:
        return self.succeeded == 0

    def summary(self, noun: str = "item") -> str:
        plural = noun if self.succeeded == 1 else f"{noun}s"
        message = f"Exported {self.succeeded} {plural}"
        if self.failed:
            message += f" ({self.failed} failed)"
        return message


@dataclass
class ExportBundle:
    """Deduplicated artifacts of every succeeded job plus the batch report."""
    report: BatchReport
    artifacts: List[ExportArtifact] = field(default_factory=list)
    skipped_duplicates: int = 0
    warnings: List[str] = field(default_factory=list)
