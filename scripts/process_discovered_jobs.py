#!/usr/bin/env python3
"""Trigger one process-discovered-jobs batch on a running jobpipe API."""

from __future__ import annotations

import argparse
import json
import os
import sys
from typing import Any

import httpx

DEFAULT_API_BASE_URL = "http://localhost:8000"


def build_payload(
    *,
    batch_size: int,
    limit: int | None,
    priority: bool,
    trigger_extraction: bool,
    trigger_embedding: bool,
) -> dict[str, Any]:
    payload: dict[str, Any] = {
        "batch_size": batch_size,
        "priority": priority,
        "trigger_extraction": trigger_extraction,
        "trigger_embedding": trigger_embedding,
    }
    if limit is not None:
        payload["limit"] = limit
    return payload


def _positive_int(raw: str) -> int:
    value = int(raw)
    if value < 1:
        raise argparse.ArgumentTypeError("must be a positive integer")
    return value


def main() -> int:
    parser = argparse.ArgumentParser(description="Promote a batch of discovered jobs into canonical jobs.")
    parser.add_argument("--batch-size", type=_positive_int, default=50, help="Candidates fetched per batch")
    parser.add_argument("--limit", type=_positive_int, default=None, help="Maximum jobs to attempt")
    parser.add_argument(
        "--no-priority",
        dest="priority",
        action="store_false",
        help="Process oldest discoveries first instead of highest priority score",
    )
    parser.add_argument("--trigger-extraction", action="store_true", help="Dispatch structured extraction")
    parser.add_argument("--trigger-embedding", action="store_true", help="Dispatch job embeddings")
    parser.add_argument(
        "--api-base-url",
        default=os.getenv("JP_API_BASE_URL", DEFAULT_API_BASE_URL),
        help="Base URL of the jobpipe API",
    )
    parser.add_argument("--dry-run", action="store_true", help="Print the request payload and exit")
    args = parser.parse_args()

    payload = build_payload(
        batch_size=args.batch_size,
        limit=args.limit,
        priority=args.priority,
        trigger_extraction=args.trigger_extraction,
        trigger_embedding=args.trigger_embedding,
    )
    if args.dry_run:
        print(json.dumps(payload, indent=2, sort_keys=True))
        return 0

    url = f"{args.api_base_url.rstrip('/')}/pipeline/process-discovered-jobs"
    try:
        response = httpx.post(url, json=payload, timeout=None)
        response.raise_for_status()
    except httpx.HTTPError as exc:
        print(f"batch trigger failed: {exc}", file=sys.stderr)
        return 1

    result = response.json()
    print(json.dumps(result, indent=2, sort_keys=True))
    return 0


if __name__ == "__main__":
    sys.exit(main())
