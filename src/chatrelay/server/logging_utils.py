from __future__ import annotations

import glob
import json
import logging
import os
import time
from typing import Any, Dict

logger = logging.getLogger(__name__)


class JsonlLogger:
    """Append one JSON record per relayed request, rotating by size.

    Writes are best effort: a failing disk is reported through ``logging``
    and never interrupts a request.
    """

    def __init__(
        self, path: str, max_bytes: int = 25_000_000, retention_days: int = 30
    ):
        self.path = path
        self.max_bytes = max_bytes
        self.retention_days = retention_days
        log_dir = os.path.dirname(path)
        if log_dir:
            try:
                os.makedirs(log_dir, exist_ok=True)
            except OSError as exc:
                logger.warning("[request-log] Cannot create %s: %s", log_dir, exc)

    def _prune_rotated(self) -> None:
        if self.retention_days <= 0:
            return
        cutoff = time.time() - self.retention_days * 86_400
        for rotated in glob.glob(glob.escape(self.path) + ".*"):
            try:
                if os.path.getmtime(rotated) < cutoff:
                    os.remove(rotated)
            except OSError:
                continue

    def _rotate_if_needed(self) -> None:
        try:
            if (
                os.path.exists(self.path)
                and os.path.getsize(self.path) > self.max_bytes
            ):
                ts = time.strftime("%Y%m%d-%H%M%S")
                os.rename(self.path, f"{self.path}.{ts}")
                self._prune_rotated()
        except OSError as exc:
            logger.warning("[request-log] Rotation of %s failed: %s", self.path, exc)

    def log(self, record: Dict[str, Any]) -> None:
        self._rotate_if_needed()
        record.setdefault("ts", time.strftime("%Y-%m-%dT%H:%M:%S", time.gmtime()))
        try:
            with open(self.path, "a", encoding="utf-8") as f:
                f.write(json.dumps(record, ensure_ascii=False, default=str) + "\n")
        except OSError as exc:
            logger.warning("[request-log] Write to %s failed: %s", self.path, exc)
