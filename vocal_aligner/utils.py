'''
Conversions between grids, alignment results and plain dicts, plus silence cleanup.
'''

from .forced_alignment import AlignmentConstraint, AlignmentInterval
from .grid import PhonemeGrid


SILENCE_TOKENS = ("_", "sil")
CONSTRAINT_TOLERANCE = 0.025  # seconds; a little over one 20 ms frame


def is_constraint_time(time, constraints, tolerance=CONSTRAINT_TOLERANCE):
    return any(abs(c.time - time) < tolerance for c in constraints)


def constraints_from_grid(grid):
    """
    Flatten a grid into a token list and anchor constraints.

    Every non-empty interval whose closing boundary is locked yields a constraint at
    that boundary covering all tokens so far.

    Returns:
        (tokens, constraints)
    """
    tokens, constraints = [], []
    for i, text in enumerate(grid.texts):
        interval_tokens = text.split()
        if not interval_tokens:
            continue
        tokens.extend(interval_tokens)
        end = grid.boundaries[i + 1]
        if end.locked:
            constraints.append(AlignmentConstraint(end.time, len(tokens)))
    return tokens, constraints


def merge_silences(intervals, constraints=(), tolerance=CONSTRAINT_TOLERANCE):
    """
    Show "sil" as "_" and merge runs of consecutive silences.

    Two silences stay separate when the boundary between them is an anchor.
    """
    merged = []
    for interval in intervals:
        text = "_" if interval.text in SILENCE_TOKENS else interval.text
        if merged and text == "_" and merged[-1].text == "_" and not is_constraint_time(merged[-1].end, constraints, tolerance):
            merged[-1] = merged[-1]._replace(end=interval.end)
            continue
        merged.append(AlignmentInterval(interval.start, interval.end, text))
    return merged


def grid_from_alignment(intervals, constraints=(), duration=None, tolerance=CONSTRAINT_TOLERANCE):
    """
    Rebuild a grid from aligned intervals.

    Boundaries at the file start, at the file end and on anchor times come back locked.
    """
    grid = PhonemeGrid.from_intervals(intervals, lock_edges=False)
    end_time = grid.end_time if duration is None else duration
    for boundary in grid.boundaries:
        if boundary.time <= 0.001 or abs(boundary.time - end_time) < 0.01:
            boundary.locked = True
        elif is_constraint_time(boundary.time, constraints, tolerance):
            boundary.locked = True
    return grid


def fix_silences(grid):
    """
    Normalize silence markers in place.

    Blank intervals become "_", phrase-length multi-phoneme texts get "_" added at
    both ends, and consecutive "_" intervals are merged.

    Returns:
        number of edits made
    """
    changed = 0
    for i, text in enumerate(grid.texts):
        stripped = text.strip()
        if not stripped:
            grid.texts[i] = "_"
            changed += 1
            continue
        if stripped == "_" or len(stripped) <= 4:
            continue
        updated = stripped
        if not updated.startswith("_ "):
            updated = "_ " + updated
        if not updated.endswith(" _"):
            updated = updated + " _"
        if updated != text:
            grid.texts[i] = updated
            changed += 1

    for i in range(len(grid.texts) - 1, 0, -1):
        if grid.texts[i] == "_" and grid.texts[i - 1] == "_":
            del grid.boundaries[i]
            del grid.texts[i]
            changed += 1
    return changed


def frames_to_intervals(symbols, frame_duration):
    """Collapse per-frame symbols into intervals of identical consecutive symbols."""
    intervals = []
    for i, symbol in enumerate(symbols):
        start, end = i * frame_duration, (i + 1) * frame_duration
        if intervals and intervals[-1].text == symbol:
            intervals[-1] = intervals[-1]._replace(end=end)
        else:
            intervals.append(AlignmentInterval(start, end, symbol))
    return intervals


def intervals_to_dicts(intervals):
    return [{"start": iv.start, "end": iv.end, "text": iv.text} for iv in intervals]


def response_to_dict(response):
    """JSON-ready dict of an AlignResponse."""
    return {
        "status": response.status,
        "intervals": intervals_to_dicts(response.intervals),
        "constraints": [
            {"time": c.time, "phoneme_index": c.phoneme_index, "type": c.type} for c in response.constraints
        ],
    }
