from datetime import datetime, timezone

def utc_now() -> datetime:
    return datetime.now(timezone.utc)

def to_iso(dt: datetime) -> str:
    """Millisecond precision, Z suffix."""
    return dt.astimezone(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")

def parse_iso(s: str) -> datetime:
    if s.endswith("Z"):
        s = s[:-1] + "+00:00"
    dt = datetime.fromisoformat(s)
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt

def from_unix(seconds: float) -> datetime:
    return datetime.fromtimestamp(seconds, tz=timezone.utc)

def to_millis(dt: datetime) -> int:
    return int(dt.timestamp() * 1000)

# 9999-12-31T23:59:59Z, the last second datetime can represent
MAX_UNIX_SECONDS = 253402300799

def unix_seconds(value) -> int:
    """Validate an untrusted unix timestamp in seconds; millisecond values are rejected."""
    if isinstance(value, bool):
        raise ValueError(f"not a unix timestamp: {value!r}")
    try:
        seconds = int(value)
    except OverflowError as exc:
        raise ValueError(f"not a unix timestamp: {value!r}") from exc
    if not 0 <= seconds <= MAX_UNIX_SECONDS:
        raise ValueError(f"unix timestamp out of range (seconds expected): {value!r}")
    return seconds
