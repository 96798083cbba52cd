"""One-shot synchronous check that an SDNext server is reachable."""

from __future__ import annotations

import logging
from typing import Iterable, List, Mapping

import requests

from .sdnext import STATUS_PARAMS, STATUS_PATH

MODELS_PATH = "/sdapi/v1/sd-models"


def check_server(base_url: str, logger: logging.Logger | None = None, *, timeout: float = 10) -> List[str]:
    """Return the checkpoint titles the server reports, or [] if it is unreachable."""

    root = base_url.rstrip("/")
    try:
        status = requests.get(f"{root}{STATUS_PATH}", params=STATUS_PARAMS, timeout=timeout)
        status.raise_for_status()
        response = requests.get(f"{root}{MODELS_PATH}", timeout=timeout)
        response.raise_for_status()
    except requests.RequestException as exc:
        if logger:
            logger.warning("SDNext server at %s is not reachable: %s", root, exc)
        return []

    try:
        payload = response.json()
    except ValueError:
        if logger:
            logger.warning("SDNext returned non-JSON payload from %s", MODELS_PATH)
        return []

    if not isinstance(payload, Iterable) or isinstance(payload, (str, bytes, Mapping)):
        return []

    models: list[str] = []
    for entry in payload:
        if not isinstance(entry, Mapping):
            continue
        title = entry.get("title") or entry.get("model_name")
        if isinstance(title, str):
            models.append(title)
    if logger:
        logger.info("SDNext at %s reports %d model(s).", root, len(models))
    return models


__all__ = ["check_server"]
