import csv
import json
import time
from pathlib import Path

RESULTS_DIR = Path("experiments/results")

def timed(fn):
    start = time.perf_counter()
    result = fn()
    end = time.perf_counter()
    return result, (end - start) * 1000  # ms

def size_bytes(obj):
    return len(json.dumps(obj).encode("utf-8"))

def stats(xs):
    """avg, p50, p95, min, max"""
    xs = sorted(float(x) for x in xs)
    n = len(xs)
    if n == 0:
        return 0.0, 0.0, 0.0, 0.0, 0.0
    avg = sum(xs) / n
    p50 = xs[n // 2]
    p95 = xs[max(int(n * 0.95) - 1, 0)]
    return avg, p50, p95, xs[0], xs[-1]

def write_csv(rows, path=RESULTS_DIR / "scenarios.csv"):
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    fieldnames = list(rows[0].keys()) if rows else []
    with path.open("w", newline="", encoding="utf-8") as f:
        w = csv.DictWriter(f, fieldnames=fieldnames)
        w.writeheader()
        w.writerows(rows)
    return path
