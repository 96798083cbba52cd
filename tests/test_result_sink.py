from __future__ import annotations

import base64
import json
import logging
from pathlib import Path
from typing import Callable, List, Optional

import httpx
import pytest

from sdnext_benchmark.job_source import JobContractError
from sdnext_benchmark.models import GenerationRequest, GenerationResponse, Job, SystemInfo
from sdnext_benchmark.result_sink import (
    LocalImageStore,
    ResultReporter,
    ResultSink,
    SignedUrlUploader,
    strip_query,
)
from sdnext_benchmark.work_queue import QueueClient

LOGGER = logging.getLogger("test")
SYSTEM = SystemInfo(vcpus=8, memory_mb=32000.0, gpu="NVIDIA GeForce RTX 4090")
REQUEST = GenerationRequest(prompt="cat", steps=35, width=1216, height=896, cfg_scale=0.7, batch_size=2)


def encoded(*payloads: bytes) -> GenerationResponse:
    return GenerationResponse(images=[base64.b64encode(p).decode("ascii") for p in payloads])


def make_sink(
    tmp_path: Path,
    calls: List[str],
    *,
    fail: Optional[Callable[[httpx.Request], bool]] = None,
    with_reporter: bool = True,
) -> ResultSink:
    def handler(request: httpx.Request) -> httpx.Response:
        calls.append(f"{request.method} {request.url.scheme}://{request.url.host}{request.url.path}")
        if fail is not None and fail(request):
            return httpx.Response(500)
        return httpx.Response(200, json={})

    transport = httpx.MockTransport(handler)
    http = httpx.AsyncClient(transport=transport)
    queue = QueueClient(
        base_url="http://queue",
        queue_name="jobs",
        auth_header="X-Api-Key",
        api_key="secret",
        timeout=5,
        logger=LOGGER,
        client=httpx.AsyncClient(base_url="http://queue", transport=transport),
    )
    reporter = None
    if with_reporter:
        reporter = ResultReporter(
            http,
            url="http://collector",
            benchmark_id="bench-1",
            auth_header="X-Api-Key",
            api_key="secret",
            logger=LOGGER,
        )
    return ResultSink(
        local_store=LocalImageStore(tmp_path / "images"),
        uploader=SignedUrlUploader(http),
        reporter=reporter,
        queue=queue,
        logger=LOGGER,
    )


def queue_job() -> Job:
    return Job(
        request=REQUEST,
        job_id="job-1",
        message_id="msg-1",
        upload_urls=("https://host/bucket/a.jpg?sig=abc", "https://host/bucket/b.jpg?sig=def"),
    )


def test_strip_query_removes_signature() -> None:
    assert strip_query("https://host/bucket/key?sig=abc") == "https://host/bucket/key"
    assert strip_query("https://host/bucket/key") == "https://host/bucket/key"


@pytest.mark.asyncio
async def test_local_store_numbers_files_sequentially(tmp_path: Path) -> None:
    store = LocalImageStore(tmp_path / "out" / "nested")

    first = await store.store(b"one")
    second = await store.store(b"two")

    assert Path(first).name == "image-0.jpg"
    assert Path(second).name == "image-1.jpg"
    assert Path(second).read_bytes() == b"two"


@pytest.mark.asyncio
async def test_persist_uploads_then_reports_then_deletes(tmp_path: Path) -> None:
    calls: List[str] = []
    sink = make_sink(tmp_path, calls)

    locations = await sink.persist(queue_job(), encoded(b"a", b"b"), elapsed=1.5, system_info=SYSTEM)

    assert locations == ["https://host/bucket/a.jpg", "https://host/bucket/b.jpg"]
    assert sorted(calls[:2]) == ["PUT https://host/bucket/a.jpg", "PUT https://host/bucket/b.jpg"]
    assert calls[2:] == ["POST http://collector/bench-1", "DELETE http://queue/jobs/msg-1"]


@pytest.mark.asyncio
async def test_report_payload_carries_system_info(tmp_path: Path) -> None:
    bodies: List[dict] = []

    def handler(request: httpx.Request) -> httpx.Response:
        if request.method == "POST":
            bodies.append(json.loads(request.content))
            assert request.headers["X-Api-Key"] == "secret"
        return httpx.Response(200)

    http = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    reporter = ResultReporter(
        http, url="http://collector/", benchmark_id="bench-1", auth_header="X-Api-Key", api_key="secret", logger=LOGGER
    )
    sink = ResultSink(
        local_store=LocalImageStore(tmp_path),
        uploader=SignedUrlUploader(http),
        reporter=reporter,
        queue=None,
        logger=LOGGER,
    )

    await sink.persist(queue_job(), encoded(b"a", b"b"), elapsed=2.0, system_info=SYSTEM)

    assert bodies == [
        {
            "id": "job-1",
            "prompt": "cat",
            "inference_time": 2.0,
            "output_urls": ["https://host/bucket/a.jpg", "https://host/bucket/b.jpg"],
            "system_info": {"vcpus": 8, "memory_mb": 32000.0, "gpu": "NVIDIA GeForce RTX 4090"},
        }
    ]


@pytest.mark.asyncio
async def test_failed_upload_leaves_message_on_queue(tmp_path: Path) -> None:
    calls: List[str] = []
    sink = make_sink(tmp_path, calls, fail=lambda request: request.method == "PUT")

    with pytest.raises(httpx.HTTPStatusError):
        await sink.persist(queue_job(), encoded(b"a", b"b"), elapsed=1.0, system_info=SYSTEM)

    assert not any(call.startswith("DELETE") for call in calls)
    assert not any(call.startswith("POST") for call in calls)


@pytest.mark.asyncio
async def test_failed_report_still_acknowledges_uploaded_job(tmp_path: Path) -> None:
    calls: List[str] = []
    sink = make_sink(tmp_path, calls, fail=lambda request: request.method == "POST")

    await sink.persist(queue_job(), encoded(b"a", b"b"), elapsed=1.0, system_info=SYSTEM)

    assert calls[-1] == "DELETE http://queue/jobs/msg-1"


@pytest.mark.asyncio
async def test_more_images_than_upload_urls_is_rejected(tmp_path: Path) -> None:
    calls: List[str] = []
    sink = make_sink(tmp_path, calls)

    with pytest.raises(JobContractError):
        await sink.persist(queue_job(), encoded(b"a", b"b", b"c"), elapsed=1.0, system_info=SYSTEM)
    assert calls == []


@pytest.mark.asyncio
async def test_fewer_images_than_upload_urls_is_rejected(tmp_path: Path) -> None:
    calls: List[str] = []
    sink = make_sink(tmp_path, calls)

    with pytest.raises(JobContractError, match=r"1 image\(s\) but has 2 upload URL\(s\)"):
        await sink.persist(queue_job(), encoded(b"a"), elapsed=1.0, system_info=SYSTEM)
    assert calls == []


@pytest.mark.asyncio
async def test_successful_report_is_logged(tmp_path: Path, caplog) -> None:
    calls: List[str] = []
    sink = make_sink(tmp_path, calls)

    with caplog.at_level(logging.DEBUG, logger="test"):
        await sink.persist(queue_job(), encoded(b"a", b"b"), elapsed=1.0, system_info=SYSTEM)

    assert "Reported job job-1" in caplog.text


@pytest.mark.asyncio
async def test_failed_report_is_not_logged_as_reported(tmp_path: Path, caplog) -> None:
    calls: List[str] = []
    sink = make_sink(tmp_path, calls, fail=lambda request: request.method == "POST")

    with caplog.at_level(logging.DEBUG, logger="test"):
        await sink.persist(queue_job(), encoded(b"a", b"b"), elapsed=1.0, system_info=SYSTEM)

    assert "Reported job" not in caplog.text
    assert "Failed to report result for job job-1" in caplog.text


@pytest.mark.asyncio
async def test_static_job_writes_to_disk_without_queue_calls(tmp_path: Path) -> None:
    calls: List[str] = []
    sink = make_sink(tmp_path, calls, with_reporter=False)

    locations = await sink.persist(Job(request=REQUEST), encoded(b"x", b"y"), elapsed=1.0, system_info=SYSTEM)

    assert [Path(location).name for location in locations] == ["image-0.jpg", "image-1.jpg"]
    assert Path(locations[0]).read_bytes() == b"x"
    assert calls == []
