"""Drive the poet unattended: advance N cycles against a running service.

Usage:
    python scripts/evolve_loop.py --cycles 10 --pause 30
"""
from __future__ import annotations

import argparse
import os
import sys
import time

import httpx

DEFAULT_BASE = os.getenv("POET_API_BASE", "http://127.0.0.1:8000")
DEFAULT_TIMEOUT = 180


def evolve_once(client: httpx.Client, base: str) -> dict:
    """POST to /api/poet/evolve and return the stored cycle."""
    r = client.post(f"{base}/api/poet/evolve")
    r.raise_for_status()
    return r.json()


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(description=__doc__.splitlines()[0])
    parser.add_argument("--cycles", type=int, default=1)
    parser.add_argument("--pause", type=float, default=0.0, help="seconds between cycles")
    parser.add_argument("--base", default=DEFAULT_BASE)
    args = parser.parse_args(argv)

    base = args.base.rstrip("/")
    failures = 0
    with httpx.Client(timeout=DEFAULT_TIMEOUT) as client:
        for i in range(max(1, args.cycles)):
            try:
                cycle = evolve_once(client, base)
            except httpx.HTTPError as exc:
                failures += 1
                print(f"[evolve] cycle request failed: {exc}", file=sys.stderr)
            else:
                print(
                    f"[evolve] #{cycle['cycle_number']} {cycle['title']!r} "
                    f"method={cycle['generation_method']}"
                )
                print(f"         next: {cycle['next_prompt']}")
            if args.pause > 0 and i < args.cycles - 1:
                time.sleep(args.pause)
    return 1 if failures else 0


if __name__ == "__main__":
    raise SystemExit(main())
