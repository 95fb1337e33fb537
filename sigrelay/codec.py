from __future__ import annotations

import json


def encode(obj) -> str:
    return json.dumps(obj, separators=(",", ":"), ensure_ascii=False)


def decode(text: str | bytes):
    return json.loads(text)
