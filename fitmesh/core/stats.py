"""Solve statistics counters and presentation utilities.

``SolveStats`` is shared by the Newton driver and the adaptive controller for
one fitting run; every recoverable event (inexact linear solve, rejected
step, descent fallback) is counted here instead of being raised.
"""
from __future__ import annotations
from dataclasses import dataclass
from typing import Dict, Any


@dataclass
class SolveStats:
    newton_iterations: int = 0
    newton_solves: int = 0
    linear_solves: int = 0
    linear_iterations: int = 0
    linear_failures: int = 0
    validity_rejections: int = 0
    armijo_rejections: int = 0
    descent_fallbacks: int = 0
    line_search_failures: int = 0
    weight_updates: int = 0
    # Timing (seconds)
    time_assembly: float = 0.0
    time_linear: float = 0.0
    time_line_search: float = 0.0
    time_total: float = 0.0

    def to_dict(self) -> Dict[str, Any]:
        return {
            'newton_iterations': self.newton_iterations,
            'newton_solves': self.newton_solves,
            'linear_solves': self.linear_solves,
            'linear_iterations': self.linear_iterations,
            'linear_failures': self.linear_failures,
            'validity_rejections': self.validity_rejections,
            'armijo_rejections': self.armijo_rejections,
            'descent_fallbacks': self.descent_fallbacks,
            'line_search_failures': self.line_search_failures,
            'weight_updates': self.weight_updates,
            'avg_linear_iterations': (self.linear_iterations / self.linear_solves) if self.linear_solves else 0.0,
            'linear_failure_rate': (self.linear_failures / self.linear_solves) if self.linear_solves else 0.0,
            'time_assembly': self.time_assembly,
            'time_linear': self.time_linear,
            'time_line_search': self.time_line_search,
            'time_total': self.time_total,
        }


def format_stats_table(stats) -> str:
    """Return a human readable two-column table of a SolveStats (or its dict)."""
    if stats is None:
        return "<no stats>"
    d = stats.to_dict() if isinstance(stats, SolveStats) else dict(stats)
    if not d:
        return "<no stats>"
    rows = []
    for key, val in d.items():
        if key.startswith('time_'):
            rows.append([key[5:] + '_ms', f"{val * 1000.0:10.3f}"])
        elif isinstance(val, float):
            rows.append([key, f"{val:10.3f}"])
        else:
            rows.append([key, str(val)])
    header = ["counter", "value"]
    col_w = [len(h) for h in header]
    for r in rows:
        for i, v in enumerate(r):
            if len(v) > col_w[i]: col_w[i] = len(v)
    def fmt(r):
        return r[0].ljust(col_w[0]) + " " + r[1].rjust(col_w[1])
    lines = [fmt(header), "-" * (sum(col_w) + 1)] + [fmt(r) for r in rows]
    return "\n".join(lines)


__all__ = ['SolveStats', 'format_stats_table']
