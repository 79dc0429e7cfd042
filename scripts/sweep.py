#!/usr/bin/env python3
"""Trigger an expiry sweep on a running Ephemera instance.

Usage examples:
    # Sweep the local instance
    uv run python scripts/sweep.py

    # Sweep a remote instance every 30 seconds
    uv run python scripts/sweep.py --url https://chat.example.com --every 30
"""

import argparse
import sys
import time
from pathlib import Path

import httpx

# Allow running from project root
sys.path.insert(0, str(Path(__file__).resolve().parent.parent))

from ephemera.config import settings


def trigger_sweep(base_url: str, secret: str) -> dict:
    """POST /messages/cleanup and return the sweep report."""
    headers = {"X-Sweep-Secret": secret} if secret else {}
    with httpx.Client(timeout=30) as client:
        resp = client.post(f"{base_url.rstrip('/')}/messages/cleanup", headers=headers)
    if resp.status_code != 200:
        print(f"ERROR: API returned {resp.status_code}: {resp.text}", file=sys.stderr)
        sys.exit(1)
    return resp.json()


def main() -> None:
    parser = argparse.ArgumentParser(description="Trigger Ephemera expiry sweeps")
    parser.add_argument("--url", default=f"http://127.0.0.1:{settings.http_port}")
    parser.add_argument("--secret", default=settings.sweep_secret)
    parser.add_argument("--every", type=int, default=0, help="Repeat every N seconds")
    args = parser.parse_args()

    while True:
        report = trigger_sweep(args.url, args.secret)
        print(
            f"examined={report['examined']} purged={report['purged']} failed={report['failed']}"
        )
        if args.every <= 0:
            break
        time.sleep(args.every)


if __name__ == "__main__":
    main()
