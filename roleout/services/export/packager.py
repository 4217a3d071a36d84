"""ZIP packaging of export artifacts."""

import io
import logging
import zipfile
from datetime import datetime
from pathlib import Path
from typing import Iterable, List, Optional

from .jobs import timestamp_for_filename
from .models import ExportArtifact

logger = logging.getLogger(__name__)

ARCHIVE_PREFIX = "RoleOut"


class ZipPackager:
    """Bundle artifacts into a single ZIP archive."""

    def __init__(self, compression: int = zipfile.ZIP_DEFLATED, sort_members: bool = True):
        """
        Initialize packager.

        Args:
            compression: zipfile compression constant
            sort_members: Order members by filename. Artifacts arrive in job
                completion order, so unsorted archives are not reproducible.
        """
        self.compression = compression
        self.sort_members = sort_members

    @staticmethod
    def archive_name(label: str, now: Optional[datetime] = None) -> str:
        """Timestamped archive filename, e.g. RoleOut_Characters_2024-01-31_12-00-00.zip"""
        return f"{ARCHIVE_PREFIX}_{label}_{timestamp_for_filename(now)}.zip"

    @staticmethod
    def unique_names(artifacts: Iterable[ExportArtifact]) -> List[tuple]:
        """Pair each artifact with a member name, suffixing repeated filenames."""
        seen = set()
        named = []
        for artifact in artifacts:
            name = artifact.filename
            if name in seen:
                path = Path(name)
                counter = 1
                while f"{path.stem}_{counter}{path.suffix}" in seen:
                    counter += 1
                name = f"{path.stem}_{counter}{path.suffix}"
                logger.info(f"Resolved name collision: {artifact.filename} -> {name}")
            seen.add(name)
            named.append((name, artifact))
        return named

    def build(self, artifacts: Iterable[ExportArtifact]) -> bytes:
        """Return ZIP archive bytes containing every artifact."""
        artifacts = list(artifacts)
        if self.sort_members:
            artifacts.sort(key=lambda a: a.filename)

        buffer = io.BytesIO()
        with zipfile.ZipFile(buffer, 'w', self.compression) as zipf:
            for name, artifact in self.unique_names(artifacts):
                zipf.writestr(name, artifact.data)
                logger.debug(f"Added {name} to archive ({len(artifact.data)} bytes)")

        return buffer.getvalue()

    def write(
        self,
        artifacts: Iterable[ExportArtifact],
        directory: Path,
        label: str,
        now: Optional[datetime] = None
    ) -> Path:
        """Build an archive and write it to ``directory``; returns its path."""
        directory = Path(directory)
        directory.mkdir(parents=True, exist_ok=True)

        archive_path = directory / self.archive_name(label, now)
        archive_path.write_bytes(self.build(artifacts))
        logger.info(f"Created archive: {archive_path}")
        return archive_path
