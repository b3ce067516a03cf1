"""Helpers shared by the test modules"""
import json
from typing import Iterable

import httpx

UPSTREAM_BASE = "https://api.example.com"
UPSTREAM_URL = f"{UPSTREAM_BASE}/v1/messages"
CC_CREDENTIAL = "cc:sk-ABC!api.example.com"


class FailingStream(httpx.AsyncByteStream):
    """Response body that breaks after sending some bytes"""

    def __init__(self, first_chunk: bytes):
        self.first_chunk = first_chunk

    async def __aiter__(self):
        yield self.first_chunk
        raise httpx.ReadError("connection reset by peer")


def sse_body(events: Iterable[dict], ping: bool = False) -> bytes:
    """Encode events the way the upstream sends them"""
    parts = []
    if ping:
        parts.append('event: ping\ndata: {"type": "ping"}\n\n')
    for event in events:
        parts.append(f"event: {event['type']}\ndata: {json.dumps(event)}\n\n")
    return "".join(parts).encode("utf-8")


def parse_sse_frames(text: str) -> list:
    """Split a relayed SSE body into (event, data) pairs"""
    frames = []
    for block in text.split("\n\n"):
        if not block.strip():
            continue
        event, data = None, None
        for line in block.split("\n"):
            if line.startswith("event: "):
                event = line[len("event: "):]
            elif line.startswith("data: "):
                data = json.loads(line[len("data: "):])
        frames.append((event, data))
    return frames
