'''
Constrained Viterbi alignment of a known phoneme sequence to frame emissions.

Every token in the target sequence gets at least one frame, tokens keep their order,
and the path is forced to start on the first token and end on the last. When a chunk
has fewer frames than tokens, or no complete path exists, the tokens are spread
evenly over the chunk instead.

Long utterances are split into independent segments at caller-supplied anchors
(`AlignmentConstraint`), each aligned on its own frame range.
'''

import logging
from typing import List, NamedTuple, Sequence

import torch

from .exceptions import ConstraintError


logger = logging.getLogger(__name__)

FRAME_DURATION = 320 / 16000  # seconds per emission frame


class AlignmentConstraint(NamedTuple):
    """Tokens [0, phoneme_index) must end by `time` seconds."""
    time: float
    phoneme_index: int
    type: str = "anchor"


class AlignmentInterval(NamedTuple):
    start: float
    end: float
    text: str


class Segment(NamedTuple):
    """One independently aligned stretch between two anchors."""
    token_start: int
    token_end: int
    boundaries: List[float]  # token_end - token_start + 1 times
    start_frame: int
    end_frame: int


def linear_distribute(num_tokens, num_frames, start_frame=0):
    """
    Evenly assign frames to tokens.

    Returns:
        list of the absolute last frame of each token
    """
    return [start_frame + ((i + 1) * num_frames) // num_tokens - 1 for i in range(num_tokens)]


def check_constraints(constraints, num_tokens, total_duration=None):
    """
    Strict validation of user-supplied anchors.

    align_segments() tolerates bad anchors by clamping or skipping them; this is for
    callers that would rather reject them up front.

    Raises:
        ConstraintError: index outside [1, num_tokens], time outside the audio,
            duplicate index, or times that decrease as the index grows
    """
    prev = None
    for c in sorted(constraints, key=lambda c: c.phoneme_index):
        if not 1 <= c.phoneme_index <= num_tokens:
            raise ConstraintError(f"anchor index {c.phoneme_index} outside 1..{num_tokens}")
        if c.time < 0 or (total_duration is not None and c.time > total_duration):
            raise ConstraintError(f"anchor time {c.time:.3f}s outside the audio")
        if prev is not None:
            if c.phoneme_index == prev.phoneme_index:
                raise ConstraintError(f"duplicate anchor for index {c.phoneme_index}")
            if c.time < prev.time:
                raise ConstraintError(
                    f"anchor {c.phoneme_index} at {c.time:.3f}s precedes anchor {prev.phoneme_index} at {prev.time:.3f}s"
                )
        prev = c


class ViterbiAligner:
    """
    Monotonic forced aligner over [T, C] log-probabilities.

    Each token occupies a contiguous run of frames; the only moves are "stay on the
    same token" or "advance to the next". Ties keep the current token.
    """

    def __init__(self, frame_duration=FRAME_DURATION, debug=False):
        self.frame_duration = frame_duration
        self.debug = debug
        self.last_trellis = None

    @torch.no_grad()
    def align_chunk(self, log_probs, token_ids, start_frame=0, end_frame=-1):
        """
        Align `token_ids` to frames [start_frame, end_frame) of `log_probs`.

        Args:
            log_probs: [T, C] emission log-probabilities
            token_ids: sequence of class ids
            start_frame: first frame of the chunk
            end_frame: one past the last frame, -1 for the end of `log_probs`

        Returns:
            list with the absolute last frame of each token, strictly increasing
            whenever the chunk has at least as many frames as tokens
        """
        total_frames = log_probs.shape[0]
        if end_frame < 0 or end_frame > total_frames:
            end_frame = total_frames
        start_frame = min(max(start_frame, 0), end_frame)

        num_tokens = len(token_ids)
        num_frames = end_frame - start_frame
        if num_tokens == 0:
            return []
        if num_frames < num_tokens:
            if self.debug:
                logger.debug("[viterbi] %d frames for %d tokens, distributing linearly", num_frames, num_tokens)
            return linear_distribute(num_tokens, num_frames, start_frame)

        ids = torch.as_tensor(list(token_ids), dtype=torch.long, device=log_probs.device)
        emissions = log_probs[start_frame:end_frame].index_select(1, ids).to(torch.float64)

        neg_inf = float("-inf")
        trellis = torch.full((num_frames, num_tokens), neg_inf, dtype=torch.float64, device=log_probs.device)
        advanced = torch.zeros((num_frames, num_tokens), dtype=torch.bool, device=log_probs.device)
        trellis[0, 0] = emissions[0, 0]
        pad = torch.full((1,), neg_inf, dtype=torch.float64, device=log_probs.device)

        for t in range(1, num_frames):
            stay = trellis[t - 1]
            advance = torch.cat([pad, trellis[t - 1, :-1]])
            take_advance = advance > stay
            trellis[t] = torch.where(take_advance, advance, stay) + emissions[t]
            advanced[t] = take_advance

        if self.debug:
            self.last_trellis = trellis

        if not torch.isfinite(trellis[-1, -1]):
            logger.debug("[viterbi] no complete path over frames %d-%d, distributing linearly", start_frame, end_frame)
            return linear_distribute(num_tokens, num_frames, start_frame)

        ends = [0] * num_tokens
        ends[-1] = num_frames - 1
        token = num_tokens - 1
        advanced = advanced.cpu()
        for t in range(num_frames - 1, 0, -1):
            if token == 0:
                break
            if advanced[t, token]:
                ends[token - 1] = t - 1
                token -= 1

        for i in range(num_tokens):
            if ends[i] < 0:
                ends[i] = i
        for i in range(num_tokens - 2, -1, -1):
            if ends[i] >= ends[i + 1]:
                ends[i] = ends[i + 1] - 1

        return [start_frame + e for e in ends]

    def align_segments(self, log_probs, token_ids: Sequence[int], constraints, total_duration) -> List[Segment]:
        """
        Align a full token sequence under anchor constraints.

        Constraints are sorted by token index. An implicit final anchor at
        (total_duration, len(token_ids)) is added when the last one does not cover
        every token. Anchors that cover no new tokens are skipped, token indices past
        the end are clamped, and an anchor earlier than its predecessor is moved up to it.

        Args:
            log_probs: [T, C] emission log-probabilities
            token_ids: class id per token
            constraints: iterable of AlignmentConstraint
            total_duration: audio duration in seconds

        Returns:
            list of Segment, covering every token exactly once in order
        """
        num_tokens = len(token_ids)
        total_frames = log_probs.shape[0]
        fd = self.frame_duration

        anchors = sorted(constraints or [], key=lambda c: c.phoneme_index)
        if not anchors or anchors[-1].phoneme_index < num_tokens:
            anchors.append(AlignmentConstraint(total_duration, num_tokens, "end"))

        segments = []
        prev_time, prev_index = 0.0, 0
        for anchor in anchors:
            index = min(anchor.phoneme_index, num_tokens)
            count = index - prev_index
            if count <= 0:
                logger.debug("[align] skipping anchor at %.3fs covering no tokens (index %d)", anchor.time, anchor.phoneme_index)
                continue
            curr_time = anchor.time
            if curr_time < prev_time:
                logger.warning("[align] anchor at %.3fs precedes previous anchor at %.3fs, clamping", curr_time, prev_time)
                curr_time = prev_time

            start_frame = min(int(prev_time / fd), total_frames)
            end_frame = min(int(curr_time / fd), total_frames)

            if end_frame > start_frame:
                ends = self.align_chunk(log_probs, token_ids[prev_index:index], start_frame, end_frame)
                interior = [min(max((e + 1) * fd, prev_time), curr_time) for e in ends[:-1]]
                boundaries = [prev_time] + interior + [curr_time]
            else:
                boundaries = [prev_time] * count + [curr_time]

            segments.append(Segment(prev_index, index, boundaries, start_frame, end_frame))
            prev_time, prev_index = curr_time, index

        return segments
