"""Captures the static host description attached to every result record."""

from __future__ import annotations

import os
import shutil
import subprocess

import psutil

from .models import SystemInfo


class GpuProbeError(RuntimeError):
    """Raised when no GPU name can be read from ``nvidia-smi``."""


def _gpu_name() -> str:
    if shutil.which("nvidia-smi") is None:
        raise GpuProbeError("nvidia-smi is not available on PATH")
    try:
        result = subprocess.run(
            ["nvidia-smi", "--query-gpu=gpu_name", "--format=csv,noheader"],
            capture_output=True,
            text=True,
            check=True,
        )
    except (OSError, subprocess.CalledProcessError) as exc:
        raise GpuProbeError(f"nvidia-smi failed: {exc}") from exc
    lines = [line.strip() for line in result.stdout.strip().splitlines() if line.strip()]
    if not lines:
        raise GpuProbeError("nvidia-smi reported no GPUs")
    return lines[0]


def capture_system_info() -> SystemInfo:
    """Return CPU count, total memory and GPU name for this host.

    GPU probe failures are not retried; a benchmark without a GPU is meaningless.
    """

    memory = psutil.virtual_memory()
    return SystemInfo(
        vcpus=os.cpu_count() or 0,
        memory_mb=round(memory.total / (1024 * 1024), 2),
        gpu=_gpu_name(),
    )


__all__ = ["GpuProbeError", "capture_system_info"]
