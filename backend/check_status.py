"""
Print poet state and generation stats of a running poet service.
"""

import os
from pathlib import Path
import httpx
from dotenv import load_dotenv


def _env(name: str, default: str | None = None) -> str | None:
    value = os.getenv(name)
    return value if value not in (None, "") else default


def main() -> int:
    env_path = Path(__file__).resolve().parent / ".env"
    load_dotenv(dotenv_path=env_path, override=True)
    base = _env("POET_API_BASE", "http://127.0.0.1:8000").rstrip("/")

    with httpx.Client(timeout=15.0) as client:
        resp = client.get(f"{base}/api/poet/state")
        resp.raise_for_status()
        state = resp.json()
        if state is None:
            print("Poet is not initialized.")
            return 1
        print("Current cycle:", state.get("current_cycle"))
        print("Total poems:", state.get("total_poems"))
        print("Genesis prompt:", state.get("genesis_prompt"))

        resp = client.get(f"{base}/api/poet/stats")
        resp.raise_for_status()
        stats = resp.json()
        for key in ("primary_count", "fallback_count", "corrected_count", "algorithmic_count"):
            print(f"{key}: {stats.get(key)}")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
