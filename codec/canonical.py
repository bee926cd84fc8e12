import json
from typing import Any

def canonicalize(obj: Any) -> bytes:
    """
    Byte-stable JSON: what gets hashed, signed, and embedded as a string in
    typed data.
        - keys sorted, no whitespace between tokens
        - UTF-8 output, non-ASCII kept as-is
        - NaN/Infinity rejected (amounts travel as decimal strings)
    """
    return json.dumps(obj, sort_keys=True, separators=(",", ":"), ensure_ascii=False, allow_nan=False).encode("utf-8")

def canonical_str(obj: Any) -> str:
    return canonicalize(obj).decode("utf-8")
