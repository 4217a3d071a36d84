"""
Batch export orchestrator.

Runs independent export jobs with bounded parallelism. Each job fetches its
resources through a ``ResourceFetcher``, optionally transforms them, and
settles into an ``ExportResult``; a failing job never affects its siblings.
Results are produced in completion order, not submission order.
"""

import asyncio
import logging
from collections import deque
from time import perf_counter
from typing import AsyncIterator, Callable, Iterable, List, Optional, Protocol, Set

from roleout.config.models import DEFAULT_MAX_CONCURRENT_EXPORTS

from .models import (
    ExportArtifact,
    ExportBundle,
    ExportJob,
    ExportResult,
    BatchReport,
    FetchedResource,
    FetchSpec,
    JobError,
    JobStatus,
)

logger = logging.getLogger(__name__)


class ResourceFetcher(Protocol):
    """Anything that can resolve a fetch spec to content (normally the host client)."""

    async def fetch(self, spec: FetchSpec) -> FetchedResource:
        ...


ResultCallback = Callable[[ExportResult], None]


class BatchExportOrchestrator:
    """
    Bounded worker pool over a queue of export jobs.

    Handles:
    - Concurrency ceiling (at most ``max_concurrent`` jobs running)
    - Per-job failure isolation
    - Optional per-job timeout
    - Cooperative cancellation before each job starts
    """

    def __init__(
        self,
        fetcher: ResourceFetcher,
        max_concurrent: int = DEFAULT_MAX_CONCURRENT_EXPORTS,
        job_timeout: Optional[float] = None,
        on_result: Optional[ResultCallback] = None
    ):
        """
        Initialize orchestrator.

        Args:
            fetcher: Resolves fetch specs to content
            max_concurrent: Maximum number of jobs running at once
            job_timeout: Seconds after which a running job is failed
            on_result: Called with each result as it settles
        """
        if max_concurrent < 1:
            raise ValueError("max_concurrent must be at least 1")

        self.fetcher = fetcher
        self.max_concurrent = max_concurrent
        self.job_timeout = job_timeout
        self.on_result = on_result
        self.peak_in_flight = 0

    async def run(
        self,
        jobs: Iterable[ExportJob],
        cancel_event: Optional[asyncio.Event] = None
    ) -> List[ExportResult]:
        """Run every job to settlement and return results in completion order."""
        results = []
        async for result in self.iter_results(jobs, cancel_event):
            results.append(result)
        return results

    async def run_batch(
        self,
        jobs: Iterable[ExportJob],
        cancel_event: Optional[asyncio.Event] = None
    ) -> ExportBundle:
        """Run jobs and aggregate them into a deduplicated bundle."""
        return collect(await self.run(jobs, cancel_event))

    async def iter_results(
        self,
        jobs: Iterable[ExportJob],
        cancel_event: Optional[asyncio.Event] = None
    ) -> AsyncIterator[ExportResult]:
        """
        Yield results as jobs settle.

        Jobs still queued when ``cancel_event`` is set are reported as failed
        without being started; jobs already running are left to finish.
        """
        queue = deque(jobs)
        in_flight: Set[asyncio.Task] = set()
        self.peak_in_flight = 0
        logger.info(f"Starting batch of {len(queue)} job(s) (max {self.max_concurrent} concurrent)")

        try:
            while queue or in_flight:
                while len(in_flight) < self.max_concurrent and queue:
                    job = queue.popleft()
                    if cancel_event is not None and cancel_event.is_set():
                        result = self._cancelled_result(job)
                        self._notify(result)
                        yield result
                        continue

                    task = asyncio.create_task(self._run_job(job), name=f"export-{job.id}")
                    in_flight.add(task)
                    self.peak_in_flight = max(self.peak_in_flight, len(in_flight))

                if not in_flight:
                    continue

                done, in_flight = await asyncio.wait(in_flight, return_when=asyncio.FIRST_COMPLETED)
                for task in done:
                    result = task.result()
                    self._notify(result)
                    yield result
        finally:
            # Consumer stopped iterating early
            for task in in_flight:
                task.cancel()
            if in_flight:
                await asyncio.gather(*in_flight, return_exceptions=True)

    async def _run_job(self, job: ExportJob) -> ExportResult:
        """Run one job, converting any error into a failed result."""
        started = perf_counter()
        job.status = JobStatus.RUNNING
        warnings: List[str] = []
        logger.debug(f"Job {job.id} ({job.display_name}) started")

        try:
            artifacts = await self._execute_with_timeout(job, warnings)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            return self._failed(job, str(e) or e.__class__.__name__, warnings, started)

        job.status = JobStatus.SUCCEEDED
        duration = perf_counter() - started
        logger.debug(f"Job {job.id} succeeded with {len(artifacts)} artifact(s) in {duration:.2f}s")
        return ExportResult(
            job_id=job.id,
            status=JobStatus.SUCCEEDED,
            label=job.display_name,
            artifacts=artifacts,
            warnings=warnings,
            duration_seconds=duration
        )

    async def _execute_with_timeout(self, job: ExportJob, warnings: List[str]) -> List[ExportArtifact]:
        if not self.job_timeout:
            return await self._execute(job, warnings)
        try:
            return await asyncio.wait_for(self._execute(job, warnings), self.job_timeout)
        except asyncio.TimeoutError:
            raise JobError(f"timed out after {self.job_timeout:g}s")

    async def _execute(self, job: ExportJob, warnings: List[str]) -> List[ExportArtifact]:
        resources: List[FetchedResource] = []

        # Fetches within a job run in order
        for spec in job.fetch_specs:
            try:
                if not spec.resource_id:
                    raise JobError("Missing resource identifier")
                resources.append(await self.fetcher.fetch(spec))
            except Exception as e:
                if spec.required:
                    raise
                message = f"Optional {spec.kind.value} fetch for {spec.resource_id} failed: {e}"
                logger.warning(f"Job {job.id}: {message}")
                warnings.append(message)

        if job.post_process is not None:
            artifacts = job.post_process(resources)
        else:
            artifacts = [default_artifact(resource) for resource in resources]

        if not artifacts:
            raise JobError("No data returned")
        return artifacts

    def _failed(self, job: ExportJob, error: str, warnings: List[str], started: float) -> ExportResult:
        job.status = JobStatus.FAILED
        logger.error(f"Failed to export {job.display_name}: {error}")
        return ExportResult(
            job_id=job.id,
            status=JobStatus.FAILED,
            label=job.display_name,
            error=error,
            warnings=warnings,
            duration_seconds=perf_counter() - started
        )

    def _cancelled_result(self, job: ExportJob) -> ExportResult:
        job.status = JobStatus.FAILED
        return ExportResult(
            job_id=job.id,
            status=JobStatus.FAILED,
            label=job.display_name,
            error="cancelled before start"
        )

    def _notify(self, result: ExportResult) -> None:
        if self.on_result is None:
            return
        try:
            self.on_result(result)
        except Exception as e:
            logger.warning(f"Result callback raised for job {result.job_id}: {e}")


def default_artifact(resource: FetchedResource) -> ExportArtifact:
    """Package a fetched body as-is under its spec's filename."""
    spec = resource.spec
    return ExportArtifact(
        filename=spec.filename,
        data=resource.as_bytes(),
        resource_id=spec.resource_id if spec.shared else None
    )


def collect(results: Iterable[ExportResult]) -> ExportBundle:
    """
    Tally results and gather artifacts of succeeded jobs.

    Shared artifacts (those with a ``resource_id``) are included once, even
    when several jobs produced them.
    """
    report = BatchReport()
    artifacts: List[ExportArtifact] = []
    included: Set[str] = set()
    warnings: List[str] = []
    skipped = 0

    for result in results:
        if not result.succeeded:
            report.failed += 1
            report.failure_reasons.append(result.failure_reason)
            logger.warning(result.failure_reason)
            continue

        report.succeeded += 1
        warnings.extend(f"{result.label or result.job_id}: {w}" for w in result.warnings)
        for artifact in result.artifacts:
            if artifact.resource_id is not None:
                if artifact.resource_id in included:
                    skipped += 1
                    logger.debug(f"Skipped duplicate artifact: {artifact.filename}")
                    continue
                included.add(artifact.resource_id)
            artifacts.append(artifact)

    logger.info(
        f"Batch settled: {report.succeeded} succeeded, {report.failed} failed, "
        f"{len(artifacts)} artifact(s), {skipped} duplicate(s) skipped"
    )
    return ExportBundle(report=report, artifacts=artifacts, skipped_duplicates=skipped, warnings=warnings)
