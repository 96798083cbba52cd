"""Throughput and latency benchmark worker for SDNext servers."""

from .config import load_config
from .runtime import BenchmarkRuntime, BenchmarkState, LoopState

__all__ = ["BenchmarkRuntime", "BenchmarkState", "LoopState", "load_config"]
