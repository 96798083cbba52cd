"""Persists generated images and reports per-job results."""

from __future__ import annotations

import asyncio
from pathlib import Path
from typing import List, Optional, Sequence
from urllib.parse import quote, urlsplit, urlunsplit

import httpx

from .job_source import JobContractError
from .models import GenerationResponse, Job, ResultRecord, SystemInfo
from .work_queue import QueueClient


def strip_query(url: str) -> str:
    """Drop the single-use signature carried in a pre-signed URL's query string."""

    parts = urlsplit(url)
    return urlunsplit((parts.scheme, parts.netloc, parts.path, "", ""))


class LocalImageStore:
    """Writes sequentially numbered images into ``output_dir``."""

    def __init__(self, output_dir: str | Path) -> None:
        self.output_dir = Path(output_dir)
        self._counter = 0

    async def store(self, image: bytes) -> str:
        # Claim the filename before suspending so concurrent chains never collide.
        path = self.output_dir / f"image-{self._counter}.jpg"
        self._counter += 1
        self.output_dir.mkdir(parents=True, exist_ok=True)
        await asyncio.to_thread(path.write_bytes, image)
        return str(path)


class SignedUrlUploader:
    """PUTs images to pre-signed object storage URLs."""

    def __init__(self, client: httpx.AsyncClient) -> None:
        self._client = client

    async def upload(self, image: bytes, url: str) -> str:
        response = await self._client.put(url, content=image, headers={"Content-Type": "image/jpeg"})
        response.raise_for_status()
        return strip_query(url)


class ResultReporter:
    """Posts result records to the collector endpoint."""

    def __init__(
        self,
        client: httpx.AsyncClient,
        *,
        url: str,
        benchmark_id: str,
        auth_header: str,
        api_key: str | None,
        logger,
    ) -> None:
        self._client = client
        self.endpoint = f"{url.rstrip('/')}/{quote(benchmark_id)}"
        self._headers = {auth_header: api_key} if api_key else {}
        self.logger = logger

    async def report(self, record: ResultRecord) -> bool:
        try:
            response = await self._client.post(self.endpoint, json=record.to_payload(), headers=self._headers)
            response.raise_for_status()
        except httpx.HTTPError as exc:
            self.logger.warning("Failed to report result for job %s: %s", record.id, exc)
            return False
        return True


class ResultSink:
    def __init__(
        self,
        *,
        local_store: LocalImageStore,
        uploader: SignedUrlUploader,
        reporter: Optional[ResultReporter],
        queue: Optional[QueueClient],
        logger,
    ) -> None:
        self.local_store = local_store
        self.uploader = uploader
        self.reporter = reporter
        self.queue = queue
        self.logger = logger

    async def upload_images(self, job: Job, response: GenerationResponse) -> List[str]:
        images = list(response.decoded_images())
        if not job.upload_urls:
            return [await self.local_store.store(image) for image in images]
        if len(images) != len(job.upload_urls):
            raise JobContractError(
                f"Job {job.job_id} produced {len(images)} image(s) "
                f"but has {len(job.upload_urls)} upload URL(s)"
            )
        return list(
            await asyncio.gather(
                *(self.uploader.upload(image, url) for image, url in zip(images, job.upload_urls))
            )
        )

    async def persist(
        self,
        job: Job,
        response: GenerationResponse,
        *,
        elapsed: float,
        system_info: SystemInfo,
    ) -> Sequence[str]:
        """Upload every image, then report, then acknowledge the queue message."""

        locations = await self.upload_images(job, response)
        self.logger.info("Stored %d image(s): %s", len(locations), locations)
        if self.reporter is not None:
            record = ResultRecord(
                id=job.job_id,
                prompt=job.request.prompt,
                inference_time=elapsed,
                output_urls=locations,
                system_info=system_info,
            )
            if await self.reporter.report(record):
                self.logger.debug("Reported job %s", job.job_id)
        if job.message_id is not None and self.queue is not None:
            await self.queue.delete_message(job.message_id)
        return locations


__all__ = [
    "LocalImageStore",
    "ResultReporter",
    "ResultSink",
    "SignedUrlUploader",
    "strip_query",
]
