"""Cycle telemetry: JSON-lines audit of pipeline decisions, summary reader."""

import json
import os
from collections import Counter, deque
from datetime import datetime, timezone, timedelta
from pathlib import Path
from typing import Iterator, Optional

from text_utils import normalize_whitespace

_BACKEND_DIR = Path(__file__).resolve().parent


def telemetry_path() -> Path:
    name = os.getenv("POET_TELEMETRY_LOG", "poet_telemetry.log") or "poet_telemetry.log"
    return _BACKEND_DIR / name


def telemetry_enabled() -> bool:
    return (os.getenv("POET_TELEMETRY_ENABLED", "1") or "1").strip().lower() in (
        "1", "true", "yes", "on",
    )


def append_poet_telemetry(event: str, payload: Optional[dict] = None) -> None:
    if not telemetry_enabled():
        return
    try:
        data = {
            "ts": datetime.now(timezone.utc).isoformat(),
            "event": normalize_whitespace(event or "event"),
            "payload": payload or {},
        }
        path = telemetry_path()
        path.parent.mkdir(parents=True, exist_ok=True)
        with open(path, "a", encoding="utf-8") as f:
            f.write(json.dumps(data, ensure_ascii=False) + "\n")
    except Exception:
        # Telemetry must never block a cycle.
        pass


def _parse_iso_utc(ts_raw: str) -> Optional[datetime]:
    try:
        return datetime.fromisoformat(str(ts_raw).replace("Z", "+00:00"))
    except ValueError:
        return None


class _LogReader:
    """Walks the log once, yielding in-window events and counting junk lines."""

    def __init__(self, path: Path, cutoff: datetime):
        self.path = path
        self.cutoff = cutoff
        self.parse_errors = 0

    def events(self) -> Iterator[tuple[datetime, str, dict]]:
        try:
            with open(self.path, "r", encoding="utf-8") as f:
                lines = f.readlines()
        except OSError:
            return
        for line in lines:
            raw = (line or "").strip()
            if not raw:
                continue
            try:
                item = json.loads(raw)
            except ValueError:
                self.parse_errors += 1
                continue
            if not isinstance(item, dict):
                self.parse_errors += 1
                continue
            ts = _parse_iso_utc(str(item.get("ts") or ""))
            if not ts or ts < self.cutoff:
                continue
            event = normalize_whitespace(str(item.get("event") or "event")) or "event"
            payload = item.get("payload") if isinstance(item.get("payload"), dict) else {}
            yield ts, event, payload


def read_poet_telemetry_summary(hours: int = 24, limit: int = 6) -> dict:
    h = max(1, min(168, int(hours or 24)))
    n = max(1, min(25, int(limit or 6)))
    now_utc = datetime.now(timezone.utc)
    path = telemetry_path()
    file_exists = path.exists()

    counts: Counter = Counter()
    method_counts: Counter = Counter()
    step_counts: Counter = Counter()
    recent: deque = deque(maxlen=n)
    trails: dict[int, list[str]] = {}

    reader = _LogReader(path, now_utc - timedelta(hours=h))
    if file_exists:
        for ts, event, payload in reader.events():
            counts[event] += 1
            if event == "cycle_stored":
                method_counts[str(payload.get("method") or "UNKNOWN")] += 1
            elif event == "pipeline_step":
                layer = str(payload.get("layer") or "UNKNOWN")
                step_counts[layer] += 1
                cycle = payload.get("cycle")
                if isinstance(cycle, int):
                    trails.setdefault(cycle, []).append(f"{layer}: {payload.get('detail') or ''}".strip())
            recent.append({"ts": ts.isoformat(), "event": event, "payload": payload})

    stored = counts["cycle_stored"]
    primary_rate = round((method_counts["Primary"] / stored) * 100.0, 2) if stored > 0 else 0.0
    last_cycles = sorted(trails)[-n:]

    return {
        "status": "ok",
        "now_utc": now_utc.isoformat(),
        "window_hours": h,
        "telemetry_enabled": telemetry_enabled(),
        "file_exists": file_exists,
        "file_path": str(path.name),
        "counts": dict(counts),
        "method_counts": dict(method_counts),
        "step_counts": dict(step_counts),
        "primary_rate_percent": primary_rate,
        "cycle_trails": {str(c): trails[c] for c in last_cycles},
        "recent": list(recent),
        "parse_errors": reader.parse_errors,
    }
