#!/usr/bin/env python3
"""Smoke-test a running ``ctxrag web`` server: health, text ingestion and one chat turn."""
from __future__ import annotations

import json
import os
import sys

from urllib.error import URLError
from urllib.request import Request, urlopen

SAMPLE = (
    "The smoke test document describes the ctxrag web server.\n\n"
    "It listens on port 3003 by default and streams chat replies."
)


def _post(url: str, payload: dict, timeout: float) -> bytes:
    request = Request(url, data=json.dumps(payload).encode("utf-8"), headers={"Content-Type": "application/json"})
    with urlopen(request, timeout=timeout) as response:
        return response.read()


def main() -> int:
    base_url = os.getenv("CTXRAG_API_URL", "http://127.0.0.1:3003").rstrip("/")
    try:
        with urlopen(f"{base_url}/healthz", timeout=5) as r:
            print("/healthz:", r.read().decode("utf-8"))
        report = json.loads(_post(f"{base_url}/documents/text", {"document_id": "smoke", "text": SAMPLE}, 300))
        print(f"/documents/text: stored={report['stored']} failed={report['failed']}")
        body = _post(f"{base_url}/chat", {"message": "Which port does the server use?"}, 300).decode("utf-8")
    except (URLError, OSError, ValueError) as exc:
        print(f"Web smoke failed: {exc}", file=sys.stderr)
        return 1

    frames = [json.loads(line[len("data: "):]) for line in body.splitlines() if line.startswith("data: ")]
    if not frames or "error" in frames[-1]:
        print(f"Web smoke failed: chat stream ended with {frames[-1] if frames else 'nothing'}", file=sys.stderr)
        return 1
    print("/chat:", "".join(frame.get("message", {}).get("content", "") for frame in frames))
    print("Web smoke passed.")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
