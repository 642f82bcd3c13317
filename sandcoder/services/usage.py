"""Append-only JSONL log of provider usage and cost."""

import json
import threading
from datetime import UTC, datetime, timedelta
from pathlib import Path
from typing import Any

from sandcoder.models.conversation import utcnow
from sandcoder.models.llm import Usage
from sandcoder.utils.logging import get_logger

logger = get_logger(__name__)


class UsageLog:
    """One JSON line per provider round-trip."""

    def __init__(self, path: Path, currency: str = "USD"):
        self.path = path
        self.currency = currency
        self._lock = threading.Lock()

    def record(self, provider: str | None, model: str | None, usage: Usage, cost: float) -> None:
        """Append one entry. Failures are logged, never raised."""
        entry = {
            "timestamp": utcnow().isoformat(),
            "provider": provider,
            "model": model,
            "usage": usage.model_dump(),
            "cost": cost,
            "currency": self.currency,
        }
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            with self._lock, self.path.open("a", encoding="utf-8") as f:
                f.write(json.dumps(entry) + "\n")
        except OSError as e:
            logger.error(f"Could not write usage log {self.path}: {e}")

    def entries(self, hours: float | None = None) -> list[dict[str, Any]]:
        """Parsed entries, optionally only those from the last ``hours``; malformed lines are skipped."""
        if not self.path.exists():
            return []
        cutoff = utcnow() - timedelta(hours=hours) if hours is not None else None

        entries: list[dict[str, Any]] = []
        with self.path.open(encoding="utf-8") as f:
            for lineno, line in enumerate(f, start=1):
                if not line.strip():
                    continue
                try:
                    entry = json.loads(line)
                    timestamp = datetime.fromisoformat(entry["timestamp"])
                except (ValueError, KeyError, TypeError) as e:
                    logger.debug(f"Skipping malformed usage line {lineno}: {e}")
                    continue
                if timestamp.tzinfo is None:
                    timestamp = timestamp.replace(tzinfo=UTC)
                if cutoff is not None and timestamp < cutoff:
                    continue
                entries.append(entry)
        return entries

    def summarize(self, hours: float | None = None) -> dict[str, Any]:
        """Totals overall and per ``provider/model``."""
        summary: dict[str, Any] = {
            "requests": 0,
            "input_tokens": 0,
            "output_tokens": 0,
            "total_tokens": 0,
            "cost": 0.0,
            "currency": self.currency,
            "by_model": {},
        }
        for entry in self.entries(hours):
            usage = entry.get("usage") or {}
            key = f"{entry.get('provider')}/{entry.get('model')}"
            bucket = summary["by_model"].setdefault(
                key, {"requests": 0, "input_tokens": 0, "output_tokens": 0, "total_tokens": 0, "cost": 0.0}
            )
            for target in (summary, bucket):
                target["requests"] += 1
                target["input_tokens"] += int(usage.get("input_tokens") or 0)
                target["output_tokens"] += int(usage.get("output_tokens") or 0)
                target["total_tokens"] += int(usage.get("total_tokens") or 0)
                target["cost"] += float(entry.get("cost") or 0.0)
        return summary
