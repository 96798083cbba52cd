"""Strategies that produce the next generation job."""

from __future__ import annotations

from typing import Any, Mapping, Optional, Union

from .models import GenerationRequest, Job, QueueMessage
from .work_queue import QueueClient


class JobContractError(ValueError):
    """A queued job is unreadable or its upload URLs do not line up with its images."""


class StaticJobSource:
    """Returns the template request on every call."""

    def __init__(self, template: GenerationRequest, *, batch_size: Optional[int] = None) -> None:
        self.template = template
        self.batch_size = batch_size

    async def next_job(self) -> Optional[Job]:
        return Job(request=self.template.with_overrides(batch_size=self.batch_size))


class QueueJobSource:
    """Pulls prompts and upload targets from the remote work queue."""

    def __init__(self, queue: QueueClient, template: GenerationRequest, *, logger) -> None:
        self.queue = queue
        self.template = template
        self.logger = logger

    async def next_job(self) -> Optional[Job]:
        """Return the first usable job in the fetched batch, or None.

        A message that can never be processed is deleted so it does not sit
        at the head of the queue on every later fetch. Other fetched messages
        stay visible and are redelivered.
        """

        for message in await self.queue.fetch_messages():
            try:
                return self._to_job(message)
            except JobContractError as exc:
                self.logger.error("Discarding queue message %s: %s", message.message_id, exc)
                await self.queue.delete_message(message.message_id)
        return None

    def _to_job(self, message: QueueMessage) -> Job:
        try:
            body = message.job_body()
        except ValueError as exc:
            raise JobContractError(str(exc)) from exc
        raw_urls = body.get("upload_url")
        if raw_urls is None:
            raw_urls = []
        if not isinstance(raw_urls, list):
            raise JobContractError(
                f"Message {message.message_id} upload_url must be a list, got {type(raw_urls).__name__}"
            )
        upload_urls = tuple(str(url) for url in raw_urls)
        try:
            batch_size = _optional_int(body.get("batch_size"))
        except (TypeError, ValueError) as exc:
            raise JobContractError(f"Message {message.message_id} has an invalid batch_size") from exc
        if batch_size is not None and batch_size < 1:
            raise JobContractError(f"Message {message.message_id} asks for a batch of {batch_size}")
        request = self.template.with_overrides(prompt=body.get("prompt"), batch_size=batch_size)
        expected = request.batch_size or 1
        if len(upload_urls) != expected:
            raise JobContractError(
                f"Message {message.message_id} carries {len(upload_urls)} upload URL(s) "
                f"for a batch of {expected}"
            )
        job_id = body.get("id")
        self.logger.debug("Received job %s (message %s)", job_id, message.message_id)
        return Job(
            request=request,
            job_id=str(job_id) if job_id is not None else None,
            message_id=message.message_id,
            upload_urls=upload_urls,
        )


JobSource = Union[StaticJobSource, QueueJobSource]


def _optional_int(value: Any) -> Optional[int]:
    if value is None or value == "":
        return None
    return int(value)


def build_job_source(
    config: Mapping[str, Any],
    template: GenerationRequest,
    *,
    queue: Optional[QueueClient],
    logger,
) -> JobSource:
    if queue is not None:
        logger.info("Pulling jobs from queue %s", queue.queue_name)
        return QueueJobSource(queue, template, logger=logger)
    batch_size = _optional_int(config.get("benchmark", {}).get("batch_size"))
    logger.info("Using static job template (batch size %s)", batch_size)
    return StaticJobSource(template, batch_size=batch_size)


__all__ = [
    "JobContractError",
    "JobSource",
    "QueueJobSource",
    "StaticJobSource",
    "build_job_source",
]
