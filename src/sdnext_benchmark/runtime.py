"""Runtime orchestration for the SDNext benchmark loop."""

from __future__ import annotations

import asyncio
import json
import time
from dataclasses import dataclass
from enum import Enum, unique
from pathlib import Path
from typing import Any, Callable, Coroutine, Dict, Optional, Set

import httpx

from .job_source import build_job_source
from .metrics import MetricsTracker
from .models import GenerationRequest, SystemInfo
from .readiness import ReadinessProber
from .result_sink import LocalImageStore, ResultReporter, ResultSink, SignedUrlUploader
from .sdnext import SDNextClient
from .shutdown import GracefulShutdown
from .system_info import capture_system_info
from .work_queue import QueueClient


@unique
class LoopState(Enum):
    STARTING = "starting"
    WARMING_UP = "warming up"
    BENCHMARKING = "benchmarking"
    DRAINING = "draining"
    STOPPED = "stopped"

    def __str__(self):
        return self.value


@dataclass
class BenchmarkState:
    images: int = 0
    batches: int = 0
    elapsed: float = 0.0
    state: LoopState = LoopState.STARTING


def target_reached(images: int, benchmark_size: int) -> bool:
    """A negative benchmark size never stops the loop on count alone."""

    return benchmark_size >= 0 and images >= benchmark_size


class BenchmarkRuntime:
    def __init__(
        self,
        config: Dict[str, Any],
        logger,
        *,
        sdnext: Optional[SDNextClient] = None,
        queue: Optional[QueueClient] = None,
        http_client: Optional[httpx.AsyncClient] = None,
        shutdown: Optional[GracefulShutdown] = None,
        system_probe: Callable[[], SystemInfo] = capture_system_info,
        install_signals: bool = True,
    ) -> None:
        self.config = config
        self.logger = logger
        self.system_probe = system_probe
        self.install_signals = install_signals
        self.shutdown = shutdown or GracefulShutdown()

        sdnext_cfg = config.get("sdnext", {})
        benchmark_cfg = config.get("benchmark", {})
        readiness_cfg = config.get("readiness", {})
        queue_cfg = config.get("queue", {})
        reporting_cfg = config.get("reporting", {})
        auth_cfg = config.get("auth", {})

        self.benchmark_size = int(benchmark_cfg.get("size", 10))
        self.output_dir = Path(str(benchmark_cfg.get("output_dir") or "images"))
        self.summary_dir = benchmark_cfg.get("summary_dir")
        self.drain_timeout = float(benchmark_cfg.get("drain_timeout", 60.0))
        self.refiner_checkpoint = sdnext_cfg.get("refiner_checkpoint")
        self.poll_interval = float(queue_cfg.get("poll_interval", 1.0))

        self.sdnext = sdnext or SDNextClient(
            base_url=str(sdnext_cfg.get("url")),
            probe_timeout=float(sdnext_cfg.get("probe_timeout", 10.0)),
            logger=logger,
        )
        if queue is None and queue_cfg.get("url") and queue_cfg.get("name"):
            queue = QueueClient(
                base_url=str(queue_cfg["url"]),
                queue_name=str(queue_cfg["name"]),
                auth_header=str(auth_cfg.get("header") or "X-Api-Key"),
                api_key=auth_cfg.get("key"),
                timeout=float(queue_cfg.get("timeout", 30.0)),
                logger=logger,
            )
        self.queue = queue
        self._http = http_client or httpx.AsyncClient(timeout=float(reporting_cfg.get("timeout", 30.0)))

        self.template = GenerationRequest.from_mapping(config.get("job", {}))
        self.job_source = build_job_source(config, self.template, queue=self.queue, logger=logger)
        self.sink = ResultSink(
            local_store=LocalImageStore(self.output_dir),
            uploader=SignedUrlUploader(self._http),
            reporter=self._build_reporter(reporting_cfg, auth_cfg),
            queue=self.queue,
            logger=logger,
        )
        self.prober = ReadinessProber(
            self.sdnext,
            self.shutdown,
            logger=logger,
            max_attempts=int(readiness_cfg.get("max_attempts", 300)),
            max_failures=int(readiness_cfg.get("max_failures", 10)),
            interval=float(readiness_cfg.get("interval_seconds", 1.0)),
            startup_marker=str(readiness_cfg.get("startup_marker", "Startup time:")),
        )
        self.metrics = MetricsTracker()
        self._tasks: Set[asyncio.Task] = set()

    def _build_reporter(self, reporting_cfg: Dict[str, Any], auth_cfg: Dict[str, Any]) -> Optional[ResultReporter]:
        url = reporting_cfg.get("url")
        if not url:
            return None
        benchmark_id = reporting_cfg.get("benchmark_id")
        if not benchmark_id:
            self.logger.warning("Reporting URL configured without a benchmark id; results will not be reported.")
            return None
        return ResultReporter(
            self._http,
            url=str(url),
            benchmark_id=str(benchmark_id),
            auth_header=str(auth_cfg.get("header") or "X-Api-Key"),
            api_key=auth_cfg.get("key"),
            logger=self.logger,
        )

    # ------------------------------------------------------------------
    async def run(self) -> BenchmarkState:
        state = BenchmarkState()
        if self.install_signals:
            self.shutdown.install()
        try:
            load_start = time.perf_counter()
            self._transition(state, LoopState.STARTING)
            system_info = self.system_probe()
            self.logger.info(
                "System: %d vCPU(s), %.0f MB memory, GPU %s",
                system_info.vcpus,
                system_info.memory_mb,
                system_info.gpu,
            )
            self.output_dir.mkdir(parents=True, exist_ok=True)

            self._transition(state, LoopState.WARMING_UP)
            await self.prober.wait_for_server_ready()
            await self.prober.wait_for_model_loaded()
            if not self.shutdown.is_triggered():
                if self.refiner_checkpoint:
                    await self.sdnext.enable_refiner(str(self.refiner_checkpoint))
                # The warm-up request doubles as the final pre-flight check.
                await self.sdnext.submit_job(self.template)
                self.logger.info("Server fully warm in %.2fs", time.perf_counter() - load_start)

                self._transition(state, LoopState.BENCHMARKING)
                await self._benchmark(state, system_info)

            self._transition(state, LoopState.DRAINING)
            await self._drain()
        finally:
            self._transition(state, LoopState.STOPPED)
            await self._cancel_outstanding()
            await self._close()

        self.logger.info("Generated %d images in %.2fs", state.images, state.elapsed)
        if state.images:
            self.logger.info("Average time per image: %.2fs", state.elapsed / state.images)
        self._write_summary(self.summary_dir, self.metrics.summary(state.elapsed))
        return state

    async def _benchmark(self, state: BenchmarkState, system_info: SystemInfo) -> None:
        start = time.perf_counter()
        while not self.shutdown.is_triggered() and not target_reached(state.images, self.benchmark_size):
            self.logger.info("Fetching job...")
            try:
                job = await self.job_source.next_job()
            except (httpx.HTTPError, ValueError) as exc:
                self.logger.warning("Job fetch failed: %s", exc)
                await self.shutdown.wait(self.poll_interval)
                continue
            if job is None:
                await self.shutdown.wait(self.poll_interval)
                continue

            self.logger.info("Submitting job...")
            job_start = time.perf_counter()
            response = await self.sdnext.submit_job(job.request)
            job_elapsed = time.perf_counter() - job_start
            count = len(response.images)
            state.images += count
            self.logger.info(
                "%d images generated in %.2fs",
                count,
                job_elapsed,
                extra={"job_id": job.job_id, "images": count, "total_images": state.images, "elapsed": job_elapsed},
            )
            state.batches += 1
            self.metrics.record(count, job_elapsed)

            self._spawn(
                self.sink.persist(job, response, elapsed=job_elapsed, system_info=system_info),
                name=f"persist-{job.job_id or state.batches}",
            )
        state.elapsed = time.perf_counter() - start

    # ------------------------------------------------------------------
    def _spawn(self, coro: Coroutine[Any, Any, Any], *, name: str) -> asyncio.Task:
        task = asyncio.create_task(coro, name=name)
        self._tasks.add(task)
        task.add_done_callback(self._on_task_done)
        return task

    def _on_task_done(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            self.logger.warning("%s failed: %s", task.get_name(), exc)

    @property
    def pending_tasks(self) -> int:
        return len(self._tasks)

    async def _drain(self) -> None:
        if not self._tasks:
            return
        outstanding = set(self._tasks)
        pending = outstanding
        if self.drain_timeout > 0:
            self.logger.info("Waiting up to %.0fs for %d upload(s) to finish", self.drain_timeout, len(outstanding))
            _, pending = await asyncio.wait(outstanding, timeout=self.drain_timeout)
        if pending:
            self.logger.warning("Abandoning %d unfinished upload(s)", len(pending))
            await self._cancel(pending)

    async def _cancel_outstanding(self) -> None:
        # Reached on a fatal error mid-benchmark; the HTTP clients are about to close.
        if self._tasks:
            await self._cancel(set(self._tasks))

    @staticmethod
    async def _cancel(tasks: Set[asyncio.Task]) -> None:
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)

    async def _close(self) -> None:
        await self.sdnext.aclose()
        if self.queue is not None:
            await self.queue.aclose()
        await self._http.aclose()

    def _transition(self, state: BenchmarkState, new_state: LoopState) -> None:
        state.state = new_state
        self.logger.debug("State -> %s", new_state, extra={"state": new_state.value})

    def _write_summary(self, directory: Optional[str], summary: Dict[str, Any]) -> None:
        if not directory:
            return
        target_dir = Path(directory)
        target_dir.mkdir(parents=True, exist_ok=True)
        timestamp = time.strftime("%Y%m%dT%H%M%S", time.gmtime())
        summary_path = target_dir / f"run-summary-{timestamp}.json"
        summary_path.write_text(json.dumps(summary, indent=2, ensure_ascii=False) + "\n", encoding="utf-8")
        self.logger.info("Run summary written to %s", summary_path)


__all__ = ["BenchmarkRuntime", "BenchmarkState", "LoopState", "target_reached"]
