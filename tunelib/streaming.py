"""Byte-range responses for audio playback."""

from __future__ import annotations

import os
from typing import Iterator, Optional, Tuple

from fastapi.responses import Response, StreamingResponse

from .utils import guess_mime


CHUNK_SIZE = 64 * 1024


class RangeNotSatisfiable(ValueError):
    pass


def parse_range(header: str, total: int) -> Tuple[int, int]:
    """Parse a single `bytes=start-end` range into inclusive offsets.

    Supports open ends (`bytes=100-`) and suffixes (`bytes=-500`). End offsets
    past the file are clamped. Multiple ranges are not supported.
    """
    value = header.strip()
    if not value.lower().startswith("bytes="):
        raise RangeNotSatisfiable(f"Unsupported range unit: {header}")
    byte_range = value[len("bytes="):].strip()
    if "," in byte_range or "-" not in byte_range:
        raise RangeNotSatisfiable(f"Unsupported range: {header}")
    start_s, end_s = (s.strip() for s in byte_range.split("-", 1))
    try:
        if start_s == "":
            length = int(end_s)
            if length <= 0:
                raise RangeNotSatisfiable(f"Empty suffix range: {header}")
            start = max(total - length, 0)
            end = total - 1
        else:
            start = int(start_s)
            end = int(end_s) if end_s else total - 1
    except ValueError as e:
        raise RangeNotSatisfiable(f"Malformed range: {header}") from e
    end = min(end, total - 1)
    if start < 0 or start >= total or end < start:
        raise RangeNotSatisfiable(f"Range outside file: {header}")
    return start, end


def iter_file(path: str, start: int, end: int, chunk_size: int = CHUNK_SIZE) -> Iterator[bytes]:
    remaining = end - start + 1
    with open(path, "rb") as f:
        f.seek(start)
        while remaining > 0:
            chunk = f.read(min(chunk_size, remaining))
            if not chunk:
                break
            remaining -= len(chunk)
            yield chunk


def audio_response(path: str, range_header: Optional[str]) -> Response:
    total = os.stat(path).st_size
    media_type = guess_mime(path)

    if not range_header:
        return StreamingResponse(
            iter_file(path, 0, total - 1),
            status_code=200,
            media_type=media_type,
            headers={"Content-Length": str(total), "Accept-Ranges": "bytes"},
        )

    try:
        start, end = parse_range(range_header, total)
    except RangeNotSatisfiable:
        return Response(status_code=416, headers={"Content-Range": f"bytes */{total}"})

    return StreamingResponse(
        iter_file(path, start, end),
        status_code=206,
        media_type=media_type,
        headers={
            "Content-Range": f"bytes {start}-{end}/{total}",
            "Accept-Ranges": "bytes",
            "Content-Length": str(end - start + 1),
        },
    )
