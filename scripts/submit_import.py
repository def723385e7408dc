#!/usr/bin/env python3
"""
Submit an import from a JSON file and tail its log stream until it finishes.
Ctrl-C sends a cancel request for the task.

    python scripts/submit_import.py items.json --business-id biz-1 [--task-id my-task] [--max-ads 50]

The file holds either a list of items or an object with an "items" list.
"""
import argparse
import json
import os
import sys
import uuid

import requests

API_BASE = os.getenv("API_BASE", "http://localhost:8000")


def post_json(path: str, payload: dict):
    """POST JSON payload to API path."""
    url = f"{API_BASE}{path}"
    return requests.post(url, json=payload, timeout=30)


def load_items(path: str) -> list:
    with open(path, "r", encoding="utf-8") as f:
        data = json.load(f)
    if isinstance(data, dict):
        data = data.get("items")
    if not isinstance(data, list):
        raise SystemExit(f"{path}: expected a list of items or an object with an 'items' list")
    return data


def tail_logs(task_id: str) -> None:
    """Print each SSE data line until the server closes the stream."""
    with requests.get(f"{API_BASE}/import/logs/{task_id}", stream=True, timeout=(10, None)) as r:
        r.raise_for_status()
        for line in r.iter_lines(decode_unicode=True):
            if line and line.startswith("data: "):
                print(line[len("data: "):], flush=True)


def main(argv=None) -> int:
    parser = argparse.ArgumentParser(description=__doc__.strip().splitlines()[0])
    parser.add_argument("items_file")
    parser.add_argument("--business-id", required=True)
    parser.add_argument("--task-id", default=None)
    parser.add_argument("--max-ads", type=int, default=None)
    args = parser.parse_args(argv)

    task_id = args.task_id or f"import-{uuid.uuid4().hex[:12]}"
    payload = {
        "taskId": task_id,
        "businessId": args.business_id,
        "items": load_items(args.items_file),
    }
    if args.max_ads is not None:
        payload["maxAds"] = args.max_ads

    r = post_json("/import", payload)
    if r.status_code != 200:
        print(f"Submit failed ({r.status_code}): {r.text}", file=sys.stderr)
        return 1
    print(f"Submitted task {task_id}", flush=True)

    try:
        tail_logs(task_id)
    except KeyboardInterrupt:
        r = post_json("/import/cancel", {"taskId": task_id})
        print(f"Cancel sent ({r.status_code})", file=sys.stderr)
        return 130
    except requests.exceptions.RequestException as e:
        print(f"Log stream error: {e}", file=sys.stderr)
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
