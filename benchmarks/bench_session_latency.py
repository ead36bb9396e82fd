"""Benchmark: Session cycle latency — per-cycle p50/p99.

Measures the latency of a full open/read/write/close cycle of the files
store, for both changed payloads (rewrite) and unchanged payloads
(timestamp-only refresh).
"""
from __future__ import annotations

import json
import tempfile
import time
from pathlib import Path

from session_store import FilesStore

_WARMUP: int = 100
_ITERATIONS: int = 2_000
_SESSION_ID: str = "0123456789abcdef0123456789abcdef"


def _cycle(store: FilesStore, payload: bytes) -> None:
    store.open()
    store.read(_SESSION_ID)
    store.write(_SESSION_ID, payload)
    store.close()


def bench_cycle_latency(changed: bool) -> dict[str, object]:
    """Benchmark FilesStore cycles.

    Returns
    -------
    dict with keys: operation, iterations, total_seconds, ops_per_second,
    p50_latency_ms, p99_latency_ms.
    """
    with tempfile.TemporaryDirectory() as tmpdir:
        store = FilesStore({"directory": tmpdir})
        for i in range(_WARMUP):
            _cycle(store, f"warmup-{i}".encode())

        latencies_ms: list[float] = []
        for i in range(_ITERATIONS):
            payload = f"payload-{i}".encode() if changed else b"payload"
            t0 = time.perf_counter()
            _cycle(store, payload)
            latencies_ms.append((time.perf_counter() - t0) * 1000)

    sorted_lats = sorted(latencies_ms)
    n = len(sorted_lats)
    total = sum(latencies_ms) / 1000

    result: dict[str, object] = {
        "operation": f"files_cycle_{'changed' if changed else 'unchanged'}",
        "iterations": _ITERATIONS,
        "total_seconds": round(total, 4),
        "ops_per_second": round(_ITERATIONS / total, 1),
        "p50_latency_ms": round(sorted_lats[n // 2], 4),
        "p99_latency_ms": round(sorted_lats[min(int(n * 0.99), n - 1)], 4),
    }
    print(
        f"[bench_session_latency] {result['operation']}: "
        f"p50={result['p50_latency_ms']:.4f}ms  "
        f"p99={result['p99_latency_ms']:.4f}ms"
    )
    return result


def run_benchmark() -> list[dict[str, object]]:
    """Entry point returning one result dict per payload mode."""
    return [bench_cycle_latency(changed=True), bench_cycle_latency(changed=False)]


if __name__ == "__main__":
    results = run_benchmark()
    results_dir = Path(__file__).parent / "results"
    results_dir.mkdir(exist_ok=True)
    output_path = results_dir / "latency_baseline.json"
    with open(output_path, "w", encoding="utf-8") as fh:
        json.dump(results, fh, indent=2)
    print(f"Results saved to {output_path}")
