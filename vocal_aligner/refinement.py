'''
Sub-frame boundary refinement.

Coarse Viterbi boundaries sit on the 20 ms frame grid. Each interior boundary gets a
feature window, all windows of a request go to the refiner in one batch, and the
predicted offsets are applied under a minimum-duration clamp so that no interval
shrinks below `min_duration` or flips.
'''

import logging
from typing import FrozenSet, List, NamedTuple, Sequence

import numpy as np
import torch

from .features import extract_feature_window


logger = logging.getLogger(__name__)

MIN_PHONEME_DURATION = 0.010


class RefineSpan(NamedTuple):
    """Boundaries of consecutive intervals plus the class id of each interval."""
    boundaries: Sequence[float]
    token_ids: Sequence[int]
    fixed: FrozenSet[int] = frozenset()  # boundary indices that must not move


def clamp_offsets(boundaries, offsets_ms, min_duration=MIN_PHONEME_DURATION, fixed=frozenset()):
    """
    Apply per-boundary offsets with the minimum-duration clamp.

    The lower bound of boundary b uses the already refined boundary b-1, the upper bound
    the original boundary b+1. A boundary whose bounds cross is left where it was. The
    first and last boundary, and any index in `fixed`, never move.

    Args:
        boundaries: original boundary times in seconds
        offsets_ms: one offset per boundary (entries for the edges are ignored)

    Returns:
        new list of boundary times
    """
    result = list(boundaries)
    for b in range(1, len(boundaries) - 1):
        if b in fixed:
            continue
        lower = result[b - 1] + min_duration
        upper = boundaries[b + 1] - min_duration
        if lower >= upper:
            continue
        moved = boundaries[b] + float(offsets_ms[b]) / 1000.0
        result[b] = min(max(moved, lower), upper)
    return result


class BoundaryRefiner:
    """
    Batches refiner queries for one or more spans.

    Args:
        engine: RefinerEngine or None
        min_duration: shortest allowed interval after refinement, seconds
    """

    def __init__(self, engine=None, min_duration=MIN_PHONEME_DURATION, debug=False):
        self.engine = engine
        self.min_duration = min_duration
        self.debug = debug

    @property
    def is_available(self):
        return self.engine is not None and self.engine.is_available

    @torch.no_grad()
    def refine_spans(self, audio, ppg, spans: Sequence[RefineSpan]) -> List[List[float]]:
        """
        Refine the interior boundaries of every span with a single refiner call.

        Args:
            audio: 1-D tensor at 16 kHz
            ppg: [frames, 36] tensor at 50 Hz
            spans: RefineSpan per independently aligned stretch

        Returns:
            refined boundary list per span; unchanged copies when the refiner is unavailable
        """
        if not self.is_available:
            return [list(span.boundaries) for span in spans]

        windows, left_ids, right_ids, slots = [], [], [], []
        for s, span in enumerate(spans):
            for b in range(1, len(span.boundaries) - 1):
                if b in span.fixed:
                    continue
                windows.append(extract_feature_window(audio, ppg, span.boundaries[b]))
                left_ids.append(span.token_ids[b - 1])
                right_ids.append(span.token_ids[b])
                slots.append((s, b))

        if not windows:
            return [list(span.boundaries) for span in spans]

        batch = torch.stack(windows).numpy()
        offsets = self.engine.refine_batch(batch, left_ids, right_ids)
        if self.debug:
            logger.debug("[refine] %d boundaries across %d spans", len(windows), len(spans))

        per_span = [np.zeros(len(span.boundaries)) for span in spans]
        for (s, b), offset in zip(slots, offsets):
            per_span[s][b] = offset

        return [
            clamp_offsets(span.boundaries, per_span[s], self.min_duration, span.fixed)
            for s, span in enumerate(spans)
        ]
