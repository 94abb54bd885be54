from __future__ import annotations

import json
from datetime import date, datetime, timezone
from pathlib import Path
from typing import Any

import structlog

from flowsentry.models import ProbeResult

logger = structlog.get_logger(__name__)

UPTIME = "uptime"
SYNTHETIC = "synthetic"


class ResultStore:
    """Dated JSON result files: ``{kind}-YYYY-MM-DD.json``, one array per run."""

    def __init__(self, results_dir: Path | str) -> None:
        self.results_dir = Path(results_dir)

    def path_for(self, kind: str, run_date: date) -> Path:
        return self.results_dir / f"{kind}-{run_date.isoformat()}.json"

    def write_batch(self, kind: str, records: list[dict[str, Any]], *, run_date: date | None = None) -> Path:
        run_date = run_date or datetime.now(timezone.utc).date()
        path = self.path_for(kind, run_date)
        path.parent.mkdir(parents=True, exist_ok=True)

        tmp = path.with_name(f"{path.name}.tmp")
        tmp.write_text(json.dumps(records, ensure_ascii=False, indent=2), encoding="utf-8")
        tmp.replace(path)

        logger.info("Results saved", kind=kind, path=str(path), count=len(records))
        return path

    def latest_path(self, kind: str) -> Path | None:
        if not self.results_dir.is_dir():
            return None
        files = sorted(self.results_dir.glob(f"{kind}-*.json"))
        return files[-1] if files else None

    def load_latest(self, kind: str) -> list[dict[str, Any]]:
        path = self.latest_path(kind)
        if path is None:
            return []
        data = json.loads(path.read_text(encoding="utf-8"))
        if not isinstance(data, list):
            raise ValueError(f"Result file {path} must contain a JSON array")
        return [item for item in data if isinstance(item, dict)]

    def load_latest_probe_results(self) -> list[ProbeResult]:
        return [ProbeResult.from_dict(item) for item in self.load_latest(UPTIME)]
