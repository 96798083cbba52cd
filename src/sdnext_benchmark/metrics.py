"""Per-batch timing aggregation for a benchmark run."""

from __future__ import annotations

from dataclasses import dataclass
from statistics import mean
from typing import Dict, List


@dataclass
class BatchRecord:
    images: int
    elapsed: float


class MetricsTracker:
    def __init__(self) -> None:
        self.records: List[BatchRecord] = []

    def record(self, images: int, elapsed: float) -> None:
        self.records.append(BatchRecord(images=int(images), elapsed=float(elapsed)))

    def summary(self, wall_seconds: float) -> Dict[str, object]:
        images = sum(record.images for record in self.records)
        elapsed_values = [record.elapsed for record in self.records]
        return {
            "batches": len(self.records),
            "images": images,
            "wall_seconds": wall_seconds,
            "avg_batch_seconds": mean(elapsed_values) if elapsed_values else 0.0,
            "avg_image_seconds": wall_seconds / images if images else 0.0,
            "batches_detail": [
                {"images": record.images, "elapsed": record.elapsed} for record in self.records
            ],
        }


__all__ = ["BatchRecord", "MetricsTracker"]
