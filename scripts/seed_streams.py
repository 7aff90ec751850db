from __future__ import annotations

import argparse
import json
from dataclasses import dataclass
from pathlib import Path
from urllib import request

SAMPLE_STREAMS: list[dict] = [
    {
        "url": "https://sample-videos.com/zip/10/mp4/SampleVideo_1280x720_1mb.mp4",
        "location": "Main Street & 5th Avenue",
        "coordinates": {"latitude": 40.7589, "longitude": -73.9851},
    },
    {
        "url": "https://sample-videos.com/zip/10/mp4/SampleVideo_1280x720_2mb.mp4",
        "location": "Broadway & 42nd Street",
        "coordinates": {"latitude": 40.7561, "longitude": -73.9865},
    },
]


@dataclass
class SeedContext:
    """Runtime context for stream registration requests."""

    api_base: str
    start: bool


def post_json(url: str, payload: dict) -> dict:
    data = json.dumps(payload).encode("utf-8")
    req = request.Request(
        url=url,
        data=data,
        headers={"Content-Type": "application/json"},
        method="POST",
    )
    with request.urlopen(req, timeout=10) as resp:
        return json.loads(resp.read().decode("utf-8"))


def load_stream_entries(path: Path | None) -> list[dict]:
    if path is None:
        return [dict(item) for item in SAMPLE_STREAMS]

    entries = json.loads(path.read_text(encoding="utf-8"))
    if not isinstance(entries, list):
        raise ValueError("streams file must contain a JSON list")
    for index, entry in enumerate(entries):
        if not isinstance(entry, dict):
            raise ValueError(f"stream #{index} must be a JSON object")
        if not entry.get("url") or not entry.get("location"):
            raise ValueError(f"stream #{index} needs both url and location")
    return entries


def seed_stream(context: SeedContext, entry: dict) -> str:
    stream = post_json(f"{context.api_base}/v1/streams", entry)
    stream_id = stream["stream_id"]
    print(f"[STREAM] {entry['location']} -> {stream_id}")

    if context.start:
        response = post_json(f"{context.api_base}/v1/streams/{stream_id}/start", {})
        print(f"[START] {stream_id} status={response['stream']['status']}")
    return stream_id


def main() -> None:
    parser = argparse.ArgumentParser()
    parser.add_argument(
        "--streams-file",
        default="",
        help="Optional JSON list of {url, location, coordinates} objects",
    )
    parser.add_argument("--api-base", default="http://127.0.0.1:8000")
    parser.add_argument(
        "--start",
        action="store_true",
        help="Start monitoring each stream after it is created",
    )
    args = parser.parse_args()

    streams_file = Path(args.streams_file) if args.streams_file else None
    if streams_file is not None and not streams_file.exists():
        raise SystemExit(f"streams file not found: {streams_file}")

    try:
        entries = load_stream_entries(streams_file)
    except ValueError as error:
        raise SystemExit(str(error)) from error

    context = SeedContext(api_base=args.api_base, start=args.start)
    stream_ids = [seed_stream(context, entry) for entry in entries]

    print(f"[DONE] registered {len(stream_ids)} streams")
    print("Check pending alerts: " f"{context.api_base}/v1/pending-alerts")


if __name__ == "__main__":
    main()
