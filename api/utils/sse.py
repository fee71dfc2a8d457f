"""Server-Sent Events framing helpers."""
from __future__ import annotations

import re

from domain.broadcast.event import Frame


SSE_HEADERS = {
    "Cache-Control": "no-cache, no-store, must-revalidate",
    "Connection": "keep-alive",
    # disable proxy buffering (nginx)
    "X-Accel-Buffering": "no",
}

HEARTBEAT = ": heartbeat\n\n"

# EventSource only breaks lines on CRLF, CR and LF; str.splitlines() also
# splits on U+2028/U+2029/NEL, which json.dumps(ensure_ascii=False) keeps raw
_LINE_BREAK = re.compile(r"\r\n|\r|\n")


def encode_frame(frame: Frame) -> str:
    """Render a frame as ``id:``/``event:``/``data:`` lines ending in a blank line."""
    lines = [f"id: {frame.id}", f"event: {frame.event}"]
    lines.extend(f"data: {chunk}" for chunk in _LINE_BREAK.split(frame.data))
    return "\n".join(lines) + "\n\n"
