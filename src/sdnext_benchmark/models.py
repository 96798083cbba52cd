"""Request, response and result shapes exchanged with external services."""

from __future__ import annotations

import base64
import json
from dataclasses import asdict, dataclass, field, fields, replace
from typing import Any, Dict, Iterator, List, Mapping, Optional, Sequence, Tuple


@dataclass(frozen=True)
class GenerationRequest:
    prompt: str
    steps: int
    width: int
    height: int
    cfg_scale: float
    send_images: bool = True
    batch_size: Optional[int] = None
    refiner_steps: Optional[int] = None
    refiner_start: Optional[float] = None

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> "GenerationRequest":
        """Build a request from a config section, ignoring unknown keys."""

        known = {f.name for f in fields(cls)}
        return cls(**{key: value for key, value in data.items() if key in known})

    def with_overrides(self, **overrides: Any) -> "GenerationRequest":
        values = {key: value for key, value in overrides.items() if value is not None}
        return replace(self, **values)

    def to_payload(self) -> Dict[str, Any]:
        return {key: value for key, value in asdict(self).items() if value is not None}


@dataclass
class GenerationResponse:
    images: List[str]
    parameters: Dict[str, Any] = field(default_factory=dict)
    info: str = ""

    @classmethod
    def from_payload(cls, payload: Mapping[str, Any]) -> "GenerationResponse":
        images = payload.get("images") or []
        if not isinstance(images, list):
            raise ValueError("txt2img response 'images' must be a list")
        parameters = payload.get("parameters")
        info = payload.get("info")
        return cls(
            images=[str(image) for image in images],
            parameters=dict(parameters) if isinstance(parameters, Mapping) else {},
            info=info if isinstance(info, str) else "",
        )

    def decoded_images(self) -> Iterator[bytes]:
        for image in self.images:
            yield base64.b64decode(image)


@dataclass(frozen=True)
class QueueMessage:
    message_id: str
    body: Any

    @classmethod
    def from_payload(cls, payload: Mapping[str, Any]) -> "QueueMessage":
        """Only the id is required here; the body is decoded by ``job_body``."""

        if not isinstance(payload, Mapping):
            raise ValueError(f"Queue message must be an object, got {type(payload).__name__}")
        message_id = payload.get("id")
        if not message_id:
            raise ValueError("Queue message is missing an 'id'")
        return cls(message_id=str(message_id), body=payload.get("body"))

    def job_body(self) -> Dict[str, Any]:
        body = self.body
        if isinstance(body, str):
            try:
                body = json.loads(body)
            except json.JSONDecodeError as exc:
                raise ValueError(f"Queue message {self.message_id} body is not valid JSON: {exc}") from exc
        if not isinstance(body, Mapping):
            raise ValueError(f"Queue message {self.message_id} has no JSON object body")
        return dict(body)


@dataclass(frozen=True)
class Job:
    request: GenerationRequest
    job_id: Optional[str] = None
    message_id: Optional[str] = None
    upload_urls: Tuple[str, ...] = ()


@dataclass(frozen=True)
class SystemInfo:
    vcpus: int
    memory_mb: float
    gpu: str

    def to_payload(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class ResultRecord:
    id: Optional[str]
    prompt: str
    inference_time: float
    output_urls: Sequence[str]
    system_info: SystemInfo

    def to_payload(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "prompt": self.prompt,
            "inference_time": self.inference_time,
            "output_urls": list(self.output_urls),
            "system_info": self.system_info.to_payload(),
        }


__all__ = [
    "GenerationRequest",
    "GenerationResponse",
    "Job",
    "QueueMessage",
    "ResultRecord",
    "SystemInfo",
]
