"""
Tests for the batch export orchestrator.

Tests cover:
- Concurrency ceiling
- Success/failure accounting and per-job isolation
- Completion-order results
- Optional fetches, timeouts and cancellation
- Shared artifact deduplication
"""

import asyncio
from typing import Dict, Optional, Set

import pytest

from roleout.services.export import (
    BatchExportOrchestrator,
    ExportArtifact,
    ExportJob,
    ExportResult,
    FetchedResource,
    FetchKind,
    FetchSpec,
    JobKind,
    JobStatus,
    collect,
)


class CountingFetcher:
    """Fake host that tracks how many fetches are outstanding."""

    def __init__(self, delays: Optional[Dict[str, float]] = None, failing: Optional[Set[str]] = None):
        self.delays = delays or {}
        self.failing = failing or set()
        self.active = 0
        self.peak = 0
        self.calls = []

    async def fetch(self, spec: FetchSpec) -> FetchedResource:
        self.active += 1
        self.peak = max(self.peak, self.active)
        self.calls.append(spec.resource_id)
        try:
            await asyncio.sleep(self.delays.get(spec.resource_id, 0.01))
            if spec.resource_id in self.failing:
                raise RuntimeError(f"HTTP 500: could not fetch {spec.resource_id}")
            return FetchedResource(spec=spec, data=spec.resource_id.encode("utf-8"))
        finally:
            self.active -= 1


class SyncThrowFetcher(CountingFetcher):
    """Raises before returning an awaitable for one resource."""

    def fetch(self, spec: FetchSpec):
        if spec.resource_id == "explode":
            raise ValueError("synchronous failure")
        return super().fetch(spec)


def make_job(resource_id: str, **spec_kwargs) -> ExportJob:
    spec = FetchSpec(
        kind=FetchKind.CHARACTER_EXPORT,
        resource_id=resource_id,
        filename=f"{resource_id}.png",
        **spec_kwargs
    )
    return ExportJob(id=f"job:{resource_id}", kind=JobKind.SINGLE_RESOURCE, fetch_specs=[spec], label=resource_id)


class TestConcurrency:

    @pytest.mark.asyncio
    async def test_twelve_jobs_never_exceed_five_running(self):
        fetcher = CountingFetcher(delays={f"c{i}": 0.01 * (i % 4 + 1) for i in range(12)})
        orchestrator = BatchExportOrchestrator(fetcher, max_concurrent=5)

        results = await orchestrator.run([make_job(f"c{i}") for i in range(12)])

        assert len(results) == 12
        assert fetcher.peak <= 5
        assert orchestrator.peak_in_flight == 5

    @pytest.mark.asyncio
    async def test_ceiling_of_one_runs_sequentially(self):
        fetcher = CountingFetcher()
        orchestrator = BatchExportOrchestrator(fetcher, max_concurrent=1)

        await orchestrator.run([make_job(f"c{i}") for i in range(4)])

        assert fetcher.peak == 1
        assert fetcher.calls == ["c0", "c1", "c2", "c3"]

    def test_rejects_zero_ceiling(self):
        with pytest.raises(ValueError):
            BatchExportOrchestrator(CountingFetcher(), max_concurrent=0)

    @pytest.mark.asyncio
    async def test_results_in_completion_order(self):
        fetcher = CountingFetcher(delays={"slow": 0.15, "fast": 0.01, "medium": 0.07})
        orchestrator = BatchExportOrchestrator(fetcher)

        results = await orchestrator.run([make_job("slow"), make_job("fast"), make_job("medium")])

        assert [r.job_id for r in results] == ["job:fast", "job:medium", "job:slow"]

    @pytest.mark.asyncio
    async def test_empty_batch(self):
        bundle = await BatchExportOrchestrator(CountingFetcher()).run_batch([])

        assert bundle.report.total == 0
        assert bundle.report.all_failed
        assert bundle.artifacts == []


class TestAccounting:

    @pytest.mark.asyncio
    async def test_three_of_twelve_fail(self):
        failing = {"c2", "c5", "c11"}
        fetcher = CountingFetcher(failing=failing)
        jobs = [make_job(f"c{i}") for i in range(12)]

        bundle = await BatchExportOrchestrator(fetcher, max_concurrent=5).run_batch(jobs)

        assert bundle.report.succeeded + bundle.report.failed == 12
        assert bundle.report.failed == 3
        assert len(bundle.artifacts) == 9
        assert sorted(bundle.report.failure_reasons) == [
            "c11: HTTP 500: could not fetch c11",
            "c2: HTTP 500: could not fetch c2",
            "c5: HTTP 500: could not fetch c5",
        ]
        assert {job.status for job in jobs} == {JobStatus.SUCCEEDED, JobStatus.FAILED}

    @pytest.mark.asyncio
    async def test_synchronous_throw_is_isolated(self):
        fetcher = SyncThrowFetcher()
        jobs = [make_job(f"c{i}") for i in range(11)] + [make_job("explode")]

        results = await BatchExportOrchestrator(fetcher).run(jobs)

        assert len(results) == 12
        failed = [r for r in results if not r.succeeded]
        assert len(failed) == 1
        assert failed[0].error == "synchronous failure"
        assert sum(r.succeeded for r in results) == 11

    @pytest.mark.asyncio
    async def test_missing_resource_identifier(self):
        results = await BatchExportOrchestrator(CountingFetcher()).run([make_job("")])

        assert results[0].status == JobStatus.FAILED
        assert results[0].error == "Missing resource identifier"

    @pytest.mark.asyncio
    async def test_post_process_failure(self):
        def broken(resources):
            raise KeyError("avatar")

        job = make_job("c1")
        job.post_process = broken

        results = await BatchExportOrchestrator(CountingFetcher()).run([job])

        assert not results[0].succeeded
        assert "avatar" in results[0].error

    @pytest.mark.asyncio
    async def test_no_artifacts_is_failure(self):
        job = make_job("c1")
        job.post_process = lambda resources: []

        results = await BatchExportOrchestrator(CountingFetcher()).run([job])

        assert results[0].error == "No data returned"

    @pytest.mark.asyncio
    async def test_timeout_fails_only_stuck_job(self):
        fetcher = CountingFetcher(delays={"stuck": 10})
        orchestrator = BatchExportOrchestrator(fetcher, job_timeout=0.05)

        bundle = await orchestrator.run_batch([make_job("stuck"), make_job("c1"), make_job("c2")])

        assert bundle.report.succeeded == 2
        assert bundle.report.failure_reasons == ["stuck: timed out after 0.05s"]


class TestOptionalFetches:

    @pytest.mark.asyncio
    async def test_optional_failure_becomes_warning(self):
        specs = [
            FetchSpec(kind=FetchKind.CHAT_EXPORT, resource_id="chat1", filename="chat1.jsonl"),
            FetchSpec(kind=FetchKind.CHARACTER_EXPORT, resource_id="nova.png", filename="nova.png",
                      required=False, shared=True),
        ]
        job = ExportJob(id="chat:1", kind=JobKind.COMPOSITE_BUNDLE, fetch_specs=specs, label="chat1")
        fetcher = CountingFetcher(failing={"nova.png"})

        results = await BatchExportOrchestrator(fetcher).run([job])

        assert results[0].succeeded
        assert [a.filename for a in results[0].artifacts] == ["chat1.jsonl"]
        assert len(results[0].warnings) == 1
        assert "nova.png" in results[0].warnings[0]

    @pytest.mark.asyncio
    async def test_fetches_run_in_order_within_job(self):
        specs = [
            FetchSpec(kind=FetchKind.CHAT_EXPORT, resource_id="first", filename="a"),
            FetchSpec(kind=FetchKind.CHARACTER_EXPORT, resource_id="second", filename="b"),
        ]
        fetcher = CountingFetcher(delays={"first": 0.05, "second": 0.0})
        job = ExportJob(id="j", kind=JobKind.COMPOSITE_BUNDLE, fetch_specs=specs)

        await BatchExportOrchestrator(fetcher).run([job])

        assert fetcher.calls == ["first", "second"]
        assert fetcher.peak == 1


class TestCancellation:

    @pytest.mark.asyncio
    async def test_queued_jobs_cancelled_running_jobs_finish(self):
        cancel = asyncio.Event()
        seen = []

        def on_result(result: ExportResult):
            seen.append(result)
            cancel.set()

        orchestrator = BatchExportOrchestrator(CountingFetcher(), max_concurrent=2, on_result=on_result)
        bundle = await orchestrator.run_batch([make_job(f"c{i}") for i in range(5)], cancel)

        assert bundle.report.succeeded == 2
        assert bundle.report.failed == 3
        assert all(reason.endswith("cancelled before start") for reason in bundle.report.failure_reasons)
        assert len(seen) == 5

    @pytest.mark.asyncio
    async def test_callback_errors_do_not_break_batch(self):
        def on_result(result):
            raise RuntimeError("ui gone")

        results = await BatchExportOrchestrator(CountingFetcher(), on_result=on_result).run(
            [make_job("c1"), make_job("c2")]
        )

        assert all(r.succeeded for r in results)

    @pytest.mark.asyncio
    async def test_closing_iterator_waits_for_running_jobs(self):
        fetcher = CountingFetcher(delays={"c1": 10, "c2": 10, "c3": 10})
        orchestrator = BatchExportOrchestrator(fetcher, max_concurrent=5)

        results = orchestrator.iter_results([make_job(f"c{i}") for i in range(4)])
        first = await results.__anext__()
        await results.aclose()

        assert first.job_id == "job:c0"
        assert fetcher.calls == ["c0", "c1", "c2", "c3"]
        assert fetcher.active == 0


class TestCollect:

    def test_shared_artifacts_deduplicated(self):
        card = ExportArtifact(filename="nova.png", data=b"card", resource_id="nova.png")
        results = [
            ExportResult(job_id="chat:1", status=JobStatus.SUCCEEDED, artifacts=[
                ExportArtifact(filename="chat1.jsonl", data=b"1"), card]),
            ExportResult(job_id="chat:2", status=JobStatus.SUCCEEDED, artifacts=[
                ExportArtifact(filename="chat2.jsonl", data=b"2"), card]),
            ExportResult(job_id="chat:3", status=JobStatus.FAILED, label="chat3", error="HTTP 404: Not Found"),
        ]

        bundle = collect(results)

        assert [a.filename for a in bundle.artifacts] == ["chat1.jsonl", "nova.png", "chat2.jsonl"]
        assert bundle.skipped_duplicates == 1
        assert bundle.report.failure_reasons == ["chat3: HTTP 404: Not Found"]
        assert bundle.report.summary("chat") == "Exported 2 chats (1 failed)"

    @pytest.mark.asyncio
    async def test_shared_character_packaged_once_across_jobs(self):
        def chat_job(n):
            specs = [
                FetchSpec(kind=FetchKind.CHAT_EXPORT, resource_id=f"chat{n}", filename=f"chat{n}.jsonl"),
                FetchSpec(kind=FetchKind.CHARACTER_EXPORT, resource_id="nova.png", filename="nova.png",
                          required=False, shared=True),
            ]
            return ExportJob(id=f"chat:{n}", kind=JobKind.COMPOSITE_BUNDLE, fetch_specs=specs)

        bundle = await BatchExportOrchestrator(CountingFetcher()).run_batch([chat_job(n) for n in range(3)])

        names = sorted(a.filename for a in bundle.artifacts)
        assert names == ["chat0.jsonl", "chat1.jsonl", "chat2.jsonl", "nova.png"]
        assert bundle.skipped_duplicates == 2

    def test_unshared_artifacts_are_not_deduplicated(self):
        artifact = ExportArtifact(filename="same.png", data=b"x")
        results = [
            ExportResult(job_id=f"j{i}", status=JobStatus.SUCCEEDED, artifacts=[artifact])
            for i in range(2)
        ]

        assert len(collect(results).artifacts) == 2
