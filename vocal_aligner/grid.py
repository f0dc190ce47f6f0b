'''
Phoneme tier as an index arena.

A grid holds N+1 boundaries and N interval texts; interval i spans boundaries i and i+1,
so neighbouring intervals share a boundary object by construction. A boundary can be
locked (an anchor the user placed) which the elastic and scoped re-aligners never move.
An interval text may hold several space-separated phonemes until it is expanded.
'''

from typing import NamedTuple

from .forced_alignment import AlignmentInterval


class Boundary:
    __slots__ = ("time", "locked")

    def __init__(self, time, locked=False):
        self.time = float(time)
        self.locked = bool(locked)

    def __repr__(self):
        return f"Boundary({self.time:.4f}{', locked' if self.locked else ''})"

    def __eq__(self, other):
        return isinstance(other, Boundary) and self.time == other.time and self.locked == other.locked


class GridInterval(NamedTuple):
    index: int
    start: float
    end: float
    text: str


class PhonemeGrid:
    """
    Boundaries plus interval texts.

    Args:
        boundaries: list of Boundary, one more than `texts`
        texts: interval labels
    """

    def __init__(self, boundaries, texts):
        if len(boundaries) != len(texts) + 1:
            raise ValueError(f"{len(texts)} intervals need {len(texts) + 1} boundaries, got {len(boundaries)}")
        self.boundaries = list(boundaries)
        self.texts = list(texts)

    @classmethod
    def from_intervals(cls, intervals, lock_edges=True, locked_times=(), tolerance=1e-6):
        """
        Build a grid from contiguous (start, end, text) intervals.

        Args:
            intervals: sequence of (start, end, text)
            lock_edges: lock the first and last boundary
            locked_times: additional boundary times to lock
        """
        intervals = list(intervals)
        if not intervals:
            raise ValueError("A grid needs at least one interval")
        times = [intervals[0][0]] + [iv[1] for iv in intervals]
        boundaries = [Boundary(t) for t in times]
        for b in boundaries:
            if any(abs(b.time - t) <= tolerance for t in locked_times):
                b.locked = True
        if lock_edges:
            boundaries[0].locked = True
            boundaries[-1].locked = True
        return cls(boundaries, [iv[2] for iv in intervals])

    @classmethod
    def from_tokens(cls, tokens, duration, start=0.0):
        """Evenly spaced single-phoneme intervals between two locked edges."""
        tokens = list(tokens)
        if not tokens:
            return cls([Boundary(start, True), Boundary(start + duration, True)], [""])
        step = duration / len(tokens)
        times = [start + i * step for i in range(len(tokens))] + [start + duration]
        grid = cls([Boundary(t) for t in times], tokens)
        grid.boundaries[0].locked = True
        grid.boundaries[-1].locked = True
        return grid

    def copy(self):
        return PhonemeGrid([Boundary(b.time, b.locked) for b in self.boundaries], list(self.texts))

    def __len__(self):
        return len(self.texts)

    def __eq__(self, other):
        return isinstance(other, PhonemeGrid) and self.boundaries == other.boundaries and self.texts == other.texts

    def __repr__(self):
        return f"PhonemeGrid({self.intervals()})"

    @property
    def last_boundary(self):
        return len(self.boundaries) - 1

    @property
    def start_time(self):
        return self.boundaries[0].time

    @property
    def end_time(self):
        return self.boundaries[-1].time

    def times(self):
        return [b.time for b in self.boundaries]

    def interval(self, i):
        return GridInterval(i, self.boundaries[i].time, self.boundaries[i + 1].time, self.texts[i])

    def intervals(self):
        return [self.interval(i) for i in range(len(self.texts))]

    def tokens(self, i):
        return self.texts[i].split()

    def set_time(self, boundary_index, time):
        self.boundaries[boundary_index].time = float(time)

    def lock(self, boundary_index, locked=True):
        self.boundaries[boundary_index].locked = locked

    def insert_boundary(self, interval_index, time, left_text, right_text, locked=False):
        """Split interval `interval_index` at `time`; returns the new boundary index."""
        iv = self.interval(interval_index)
        if not iv.start <= time <= iv.end:
            raise ValueError(f"time {time} outside interval [{iv.start}, {iv.end}]")
        self.boundaries.insert(interval_index + 1, Boundary(time, locked))
        self.texts[interval_index:interval_index + 1] = [left_text, right_text]
        return interval_index + 1

    def find_surrounding_anchors(self, boundary_index):
        """
        Nearest locked boundaries strictly left and right of `boundary_index`.

        The grid edges count as anchors whether or not they are locked.

        Returns:
            (left_index, right_index)
        """
        if not 0 < boundary_index < self.last_boundary:
            raise ValueError(f"boundary {boundary_index} is not an interior boundary")
        left = boundary_index - 1
        while left > 0 and not self.boundaries[left].locked:
            left -= 1
        right = boundary_index + 1
        while right < self.last_boundary and not self.boundaries[right].locked:
            right += 1
        return left, right

    def merge_for_smart_drag(self, left, pivot, right):
        """
        Collapse the boundaries between two anchors into a single pivot.

        Intervals between `left` and `pivot` merge into one interval whose text joins
        their phonemes, and likewise between `pivot` and `right`.

        Returns:
            (left, new_pivot, new_right) boundary indices, i.e. (left, left + 1, left + 2)
        """
        if not left < pivot < right:
            raise ValueError(f"expected left < pivot < right, got {left}, {pivot}, {right}")
        left_text = " ".join(t for t in self.texts[left:pivot] if t.strip())
        right_text = " ".join(t for t in self.texts[pivot:right] if t.strip())
        pivot_boundary = self.boundaries[pivot]
        self.boundaries[left + 1:right] = [pivot_boundary]
        self.texts[left:right] = [left_text, right_text]
        return left, left + 1, left + 2

    def expand_interval(self, interval_index, tokens, interior_times, locked=False):
        """
        Replace one interval by one interval per token.

        Args:
            tokens: phonemes for the new intervals
            interior_times: len(tokens) - 1 times for the new boundaries

        Returns:
            index of the boundary that now closes the expanded run
        """
        tokens = list(tokens)
        interior_times = list(interior_times)
        if not tokens:
            return interval_index + 1
        if len(interior_times) != len(tokens) - 1:
            raise ValueError(f"{len(tokens)} tokens need {len(tokens) - 1} interior times, got {len(interior_times)}")
        new_boundaries = [Boundary(t, locked) for t in interior_times]
        self.boundaries[interval_index + 1:interval_index + 1] = new_boundaries
        self.texts[interval_index:interval_index + 1] = tokens
        return interval_index + len(tokens)

    def validate(self, phoneme_set):
        """Indices of intervals containing symbols outside `phoneme_set`."""
        allowed = set(phoneme_set)
        if not allowed:
            return []
        return [i for i, text in enumerate(self.texts) if any(tok not in allowed for tok in text.split())]

    def to_alignment_intervals(self):
        return [AlignmentInterval(iv.start, iv.end, iv.text) for iv in self.intervals()]
