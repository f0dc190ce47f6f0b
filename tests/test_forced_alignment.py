# File: tests/test_forced_alignment.py
"""
Tests for constrained Viterbi alignment.
"""

import pytest
import torch

from vocal_aligner.exceptions import ConstraintError
from vocal_aligner.forced_alignment import AlignmentConstraint, ViterbiAligner, check_constraints, linear_distribute

from . import planned_log_probs

SIL, K, A = 4, 5, 6


class TestAlignChunk:

    @pytest.fixture
    def aligner(self):
        return ViterbiAligner()

    def test_recovers_planned_segmentation(self, aligner):
        log_probs = planned_log_probs([(SIL, 25), (K, 25), (A, 25), (SIL, 25)])
        assert aligner.align_chunk(log_probs, [SIL, K, A, SIL]) == [24, 49, 74, 99]

    def test_frame_range_is_respected(self, aligner):
        log_probs = planned_log_probs([(SIL, 10), (K, 10), (A, 10), (SIL, 10)])
        ends = aligner.align_chunk(log_probs, [K, A], start_frame=10, end_frame=30)
        assert ends == [19, 29]

    def test_empty_sequence(self, aligner):
        assert aligner.align_chunk(planned_log_probs([(SIL, 5)]), []) == []

    def test_fewer_frames_than_tokens_distributes_linearly(self, aligner):
        log_probs = planned_log_probs([(SIL, 10)])
        ends = aligner.align_chunk(log_probs, [SIL, K, A, SIL], start_frame=4, end_frame=6)
        assert ends == linear_distribute(4, 2, 4)

    def test_unreachable_path_distributes_linearly(self, aligner):
        log_probs = torch.full((20, 40), -3.0)
        log_probs[:, K] = float("-inf")
        ends = aligner.align_chunk(log_probs, [SIL, K, A], start_frame=5, end_frame=20)
        assert ends == linear_distribute(3, 15, 5)
        assert ends == [9, 14, 19]

    def test_ties_stay_on_current_token(self, aligner):
        log_probs = torch.zeros(6, 40)
        # flat emissions: a move only wins when it strictly beats staying, so tokens
        # advance as soon as they become reachable and the last one absorbs the rest
        assert aligner.align_chunk(log_probs, [SIL, K, A]) == [0, 1, 5]

    @pytest.mark.parametrize("seed", [0, 1, 2, 3])
    def test_random_emissions_give_monotone_cover(self, aligner, seed):
        torch.manual_seed(seed)
        log_probs = torch.log_softmax(torch.randn(60, 40) * 3, dim=-1)
        tokens = torch.randint(4, 40, (12,)).tolist()
        ends = aligner.align_chunk(log_probs, tokens, start_frame=7, end_frame=55)
        assert len(ends) == len(tokens)
        assert ends[-1] == 54
        assert ends[0] >= 7
        assert all(b > a for a, b in zip(ends, ends[1:]))

    def test_debug_keeps_trellis(self):
        aligner = ViterbiAligner(debug=True)
        aligner.align_chunk(planned_log_probs([(SIL, 5), (K, 5)]), [SIL, K])
        assert aligner.last_trellis.shape == (10, 2)


class TestLinearDistribute:

    def test_even_split(self):
        assert linear_distribute(4, 100) == [24, 49, 74, 99]

    def test_offset(self):
        assert linear_distribute(2, 10, start_frame=30) == [34, 39]


class TestAlignSegments:

    @pytest.fixture
    def aligner(self):
        return ViterbiAligner()

    @pytest.fixture
    def log_probs(self):
        return planned_log_probs([(SIL, 25), (K, 25), (A, 25), (SIL, 25)])

    def test_implicit_final_anchor(self, aligner, log_probs):
        segments = aligner.align_segments(log_probs, [SIL, K, A, SIL], [], 2.0)
        assert len(segments) == 1
        assert segments[0].boundaries == pytest.approx([0.0, 0.5, 1.0, 1.5, 2.0])

    def test_anchor_splits_segments(self, aligner, log_probs):
        constraints = [AlignmentConstraint(1.0, 2)]
        segments = aligner.align_segments(log_probs, [SIL, K, A, SIL], constraints, 2.0)
        assert [(s.token_start, s.token_end) for s in segments] == [(0, 2), (2, 4)]
        assert segments[0].boundaries == pytest.approx([0.0, 0.5, 1.0])
        assert segments[1].boundaries == pytest.approx([1.0, 1.5, 2.0])

    def test_anchors_are_sorted_by_token_index(self, aligner, log_probs):
        constraints = [AlignmentConstraint(2.0, 4), AlignmentConstraint(1.0, 2)]
        segments = aligner.align_segments(log_probs, [SIL, K, A, SIL], constraints, 2.0)
        assert [s.token_end for s in segments] == [2, 4]

    def test_anchor_covering_no_tokens_is_skipped(self, aligner, log_probs):
        constraints = [AlignmentConstraint(0.3, 0), AlignmentConstraint(1.0, 2), AlignmentConstraint(1.2, 2)]
        segments = aligner.align_segments(log_probs, [SIL, K, A, SIL], constraints, 2.0)
        assert [(s.token_start, s.token_end) for s in segments] == [(0, 2), (2, 4)]
        assert segments[1].boundaries[0] == pytest.approx(1.0)

    def test_token_index_past_end_is_clamped(self, aligner, log_probs):
        segments = aligner.align_segments(log_probs, [SIL, K, A, SIL], [AlignmentConstraint(2.0, 9)], 2.0)
        assert len(segments) == 1
        assert segments[0].token_end == 4

    def test_anchor_before_previous_is_clamped(self, aligner, log_probs):
        constraints = [AlignmentConstraint(1.0, 2), AlignmentConstraint(0.5, 3)]
        segments = aligner.align_segments(log_probs, [SIL, K, A, SIL], constraints, 2.0)
        middle = segments[1]
        assert middle.boundaries == pytest.approx([1.0, 1.0])
        for seg in segments:
            assert all(b >= a for a, b in zip(seg.boundaries, seg.boundaries[1:]))

    def test_segments_are_contiguous(self, aligner, log_probs):
        constraints = [AlignmentConstraint(0.7, 1), AlignmentConstraint(1.3, 3)]
        segments = aligner.align_segments(log_probs, [SIL, K, A, SIL], constraints, 2.0)
        assert segments[0].boundaries[0] == 0.0
        for prev, nxt in zip(segments, segments[1:]):
            assert prev.boundaries[-1] == nxt.boundaries[0]
        assert segments[-1].boundaries[-1] == 2.0


class TestCheckConstraints:

    def test_valid_anchors(self):
        check_constraints([AlignmentConstraint(1.0, 2), AlignmentConstraint(0.5, 1)], 4, 2.0)

    @pytest.mark.parametrize("anchors", [
        [AlignmentConstraint(1.0, 0)],
        [AlignmentConstraint(1.0, 5)],
        [AlignmentConstraint(2.5, 2)],
        [AlignmentConstraint(-0.1, 2)],
        [AlignmentConstraint(1.0, 2), AlignmentConstraint(1.2, 2)],
        [AlignmentConstraint(1.0, 2), AlignmentConstraint(0.8, 3)],
    ])
    def test_invalid_anchors(self, anchors):
        with pytest.raises(ConstraintError):
            check_constraints(anchors, 4, 2.0)

    def test_constraint_error_is_value_error(self):
        with pytest.raises(ValueError):
            check_constraints([AlignmentConstraint(1.0, 9)], 4)
