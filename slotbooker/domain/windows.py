"""
Interval algebra over half-open time windows.

All functions are pure and never mutate their inputs.

``merge_adjacent`` is a public helper for callers that want contiguous free
time (for display or reporting). The slot engine itself never merges: slots
of adjacent free windows stay separate.
"""

from typing import Iterable, List

from .models import TimeWindow


def overlaps(a: TimeWindow, b: TimeWindow) -> bool:
    """Return True when the windows share any instant. Touching windows do not."""
    return a.overlaps(b)


def intersect(a: TimeWindow, b: TimeWindow) -> TimeWindow | None:
    """Return the common part of two windows, or None."""
    return a.intersect(b)


def contains(outer: TimeWindow, inner: TimeWindow) -> bool:
    """Return True when ``inner`` lies entirely inside ``outer``."""
    return outer.contains(inner)


def subtract(base: TimeWindow, removals: Iterable[TimeWindow]) -> List[TimeWindow]:
    """
    Remove every window in ``removals`` from ``base``.

    Removals are applied one after another; each one is checked against all
    fragments that survived the previous removals.

    Example:
    Base: 09:00 - 17:00
    Removals: [12:00-13:00]
    Result: [09:00-12:00, 13:00-17:00]
    """
    remaining: List[TimeWindow] = [base]

    for removal in removals:
        survivors: List[TimeWindow] = []

        for window in remaining:
            if not window.overlaps(removal):
                survivors.append(window)
                continue

            if window.start < removal.start:
                survivors.append(TimeWindow(start=window.start, end=removal.start))

            if window.end > removal.end:
                survivors.append(TimeWindow(start=removal.end, end=window.end))

        remaining = survivors

        if not remaining:
            break

    return remaining


def merge_adjacent(windows: Iterable[TimeWindow]) -> List[TimeWindow]:
    """
    Merge overlapping or adjacent time windows.

    Example: [09:00-10:00, 10:00-11:00] -> [09:00-11:00]
    """
    sorted_windows = sorted(windows, key=lambda w: w.start)
    if not sorted_windows:
        return []

    merged: List[TimeWindow] = [sorted_windows[0]]

    for current in sorted_windows[1:]:
        last = merged[-1]

        if current.start <= last.end:
            merged[-1] = TimeWindow(start=last.start, end=max(last.end, current.end))
        else:
            merged.append(current)

    return merged
