'''
Forced alignment service.

VocalAligner owns the active profile, the ONNX models and the per-audio feature cache,
and exposes the alignment entry points:

    align()          full constrained alignment of a phoneme sequence
    align_scoped()   re-align the two spans around a dragged boundary
    realign_around() smart-drag helper operating on a PhonemeGrid
    realign_grid()   whole-grid realignment (model, manual or elastic policy)
    recognize()      free per-frame phoneme recognition

All of them can also be scheduled on a single background worker with submit().
Results carry the cache generation they were computed against so that callers
can discard results that predate an invalidation.
'''

import logging
import os
from concurrent.futures import ThreadPoolExecutor
from typing import List, NamedTuple, Optional, Tuple

from .audio import load_audio
from .cache import AudioFeatureCache, CacheEntry
from .elastic import distribute_entire_grid, distribute_with_pivot, elastic_realign, weighted_interior_times
from .exceptions import ModelUnavailableError, UnknownPhonemeError
from .features import compute_ppg, log_softmax
from .forced_alignment import FRAME_DURATION, AlignmentConstraint, AlignmentInterval, ViterbiAligner
from .inference import AcousticModel, RefinerEngine
from .presets import ManualProfile, ModelBackedProfile, get_preset
from .refinement import BoundaryRefiner, RefineSpan
from .utils import constraints_from_grid, grid_from_alignment, merge_silences


logger = logging.getLogger(__name__)


class AlignResponse(NamedTuple):
    status: str
    intervals: Tuple[AlignmentInterval, ...]
    constraints: Tuple[AlignmentConstraint, ...]
    generation: int = 0


class ScopedAlignment(NamedTuple):
    """Refined interior boundary times on each side of the pivot."""
    left: Tuple[float, ...]
    right: Tuple[float, ...]
    generation: int = 0

    @property
    def interior_times(self):
        return self.left + self.right


def _even_interior_times(start, end, count):
    step = (end - start) / count
    return [start + step * (k + 1) for k in range(count - 1)]


class VocalAligner:
    """
    Phoneme forced aligner backed by an ONNX acoustic model and boundary refiner.

    Args:
        preset: name of a built-in profile (see presets.get_preset)
        profile: ModelBackedProfile or ManualProfile, overrides `preset`
        model_path: acoustic model .onnx, overrides both (refiner from `refiner_path`)
        refiner_path: boundary refiner .onnx used together with `model_path`
        models_dir: base directory for relative model files in profiles
        providers: onnxruntime execution providers
        min_phoneme_ms: shortest interval the refiner may produce
        cache_size: number of recordings whose features are kept in memory
        debug: verbose logging of decoding and refinement
    """

    def __init__(self, preset=None, profile=None, model_path=None, refiner_path=None, models_dir=None,
                 providers=None, min_phoneme_ms=10, cache_size=1, debug=False):
        self.models_dir = models_dir
        self.providers = providers
        self.min_phoneme_duration = min_phoneme_ms / 1000.0
        self.debug = debug

        self.cache = AudioFeatureCache(max_entries=cache_size)
        self.decoder = ViterbiAligner(frame_duration=FRAME_DURATION, debug=debug)
        self.profile = None
        self.acoustic = None
        self.refiner = BoundaryRefiner(None, self.min_phoneme_duration, debug=debug)
        self._executor = None

        if model_path is not None:
            profile = ModelBackedProfile(
                "custom", os.path.abspath(model_path),
                os.path.abspath(refiner_path) if refiner_path else None,
            )
        elif profile is None and preset is not None:
            profile = get_preset(preset, models_dir)
        if profile is not None:
            self.load_profile(profile)

    # ------------------------------------------------------------------ models

    def load_profile(self, profile):
        """Switch profile: unload current models, load the new ones, drop cached features."""
        self.unload_model()
        self.profile = profile
        if isinstance(profile, ModelBackedProfile):
            self.acoustic = AcousticModel(profile.model_path(self.models_dir), self.providers, debug=self.debug)
            refiner_path = profile.refiner_path(self.models_dir)
            engine = RefinerEngine(refiner_path, self.providers, debug=self.debug) if refiner_path else None
            self.refiner = BoundaryRefiner(engine, self.min_phoneme_duration, debug=self.debug)
            if not self.refiner.is_available:
                logger.info("Profile %s: boundary refinement disabled", profile.id)
        logger.info("Loaded profile %s (manual=%s)", profile.id, profile.is_manual_mode)

    def unload_model(self):
        self.acoustic = None
        self.refiner = BoundaryRefiner(None, self.min_phoneme_duration, debug=self.debug)
        self.profile = None
        self.invalidate_cache()

    def invalidate_cache(self, audio_path=None):
        key = self._cache_key(audio_path) if audio_path is not None else None
        return self.cache.invalidate(key)

    @property
    def is_available(self):
        """True when an acoustic model is loaded."""
        return self.acoustic is not None

    @property
    def is_manual_mode(self):
        return self.profile is not None and self.profile.is_manual_mode

    @property
    def vocab(self):
        return list(self.acoustic.id_to_symbol) if self.acoustic else []

    def _require_model(self):
        if self.acoustic is None:
            raise ModelUnavailableError("No acoustic model loaded")
        return self.acoustic

    # ------------------------------------------------------------------- cache

    @staticmethod
    def _cache_key(audio_path):
        return os.path.abspath(audio_path)

    def _build_entry(self, audio_path):
        acoustic = self._require_model()
        audio = load_audio(audio_path)
        logits = acoustic.infer_logits(audio)
        if self.debug:
            logger.debug("[cache] %s: %d samples -> %d frames", audio_path, audio.shape[0], logits.shape[0])
        return CacheEntry(audio, logits, log_softmax(logits), compute_ppg(logits))

    def ensure_audio_cache(self, audio_path) -> CacheEntry:
        """Load audio and run the acoustic model once per recording."""
        self._require_model()
        return self.cache.get_or_build(self._cache_key(audio_path), lambda: self._build_entry(audio_path))

    # --------------------------------------------------------------- alignment

    def align(self, audio_path, tokens: List[str], constraints: Optional[List[AlignmentConstraint]] = None) -> AlignResponse:
        """
        Align a phoneme sequence to a recording.

        Args:
            audio_path: audio file
            tokens: phoneme symbols; "_" is treated as silence
            constraints: anchors (time, phoneme_index); tokens before phoneme_index end by time

        Returns:
            AlignResponse whose intervals are contiguous, start at 0 and end at the last anchor
            (the audio duration when no anchor covers the final token)
        """
        generation = self.cache.generation
        entry = self.ensure_audio_cache(audio_path)
        tokens = list(tokens)
        constraints = list(constraints or [])
        if not tokens:
            return AlignResponse("success", (), tuple(constraints), generation)

        token_ids = self.acoustic.token_ids(tokens)
        segments = self.decoder.align_segments(entry.log_probs, token_ids, constraints, entry.duration)

        spans = [RefineSpan(seg.boundaries, token_ids[seg.token_start:seg.token_end]) for seg in segments]
        refined = self.refiner.refine_spans(entry.audio, entry.ppg, spans)

        intervals = []
        for seg, bounds in zip(segments, refined):
            for k in range(seg.token_end - seg.token_start):
                intervals.append(AlignmentInterval(bounds[k], bounds[k + 1], tokens[seg.token_start + k]))

        if self.debug:
            logger.debug("[align] %d tokens, %d segments, %d intervals", len(tokens), len(segments), len(intervals))
        return AlignResponse("success", tuple(intervals), tuple(constraints), generation)

    def _align_span(self, entry, token_ids, start_time, end_time):
        count = len(token_ids)
        if count < 2:
            return []
        total_frames = entry.num_frames
        start_frame = min(int(start_time / FRAME_DURATION), total_frames)
        end_frame = min(int(end_time / FRAME_DURATION), total_frames)
        if end_frame <= start_frame:
            return _even_interior_times(start_time, end_time, count)
        ends = self.decoder.align_chunk(entry.log_probs, token_ids, start_frame, end_frame)
        return [min(max((e + 1) * FRAME_DURATION, start_time), end_time) for e in ends[:-1]]

    def align_scoped(self, audio_path, start_time, pivot_time, end_time, left_tokens, right_tokens) -> ScopedAlignment:
        """
        Re-align the phonemes on both sides of a pivot boundary.

        The two spans [start, pivot] and [pivot, end] are aligned independently and refined
        in one batch; the pivot and the two outer anchors never move.

        Returns:
            ScopedAlignment with len(left_tokens) - 1 and len(right_tokens) - 1 interior times
        """
        generation = self.cache.generation
        entry = self.ensure_audio_cache(audio_path)
        left_ids = self.acoustic.token_ids(left_tokens)
        right_ids = self.acoustic.token_ids(right_tokens)

        left = self._align_span(entry, left_ids, start_time, pivot_time)
        right = self._align_span(entry, right_ids, pivot_time, end_time)
        if not left and not right:
            return ScopedAlignment((), (), generation)

        # a side without tokens contributes neither boundaries nor ids
        halves = []
        if left_ids:
            halves.append(([start_time] + left + [pivot_time], left_ids))
        if right_ids:
            halves.append(([pivot_time] + right + [end_time], right_ids))
        boundaries, token_ids = list(halves[0][0]), list(halves[0][1])
        fixed = frozenset()
        if len(halves) == 2:
            fixed = frozenset([len(boundaries) - 1])
            boundaries += halves[1][0][1:]
            token_ids += halves[1][1]

        refined = self.refiner.refine_spans(entry.audio, entry.ppg, [RefineSpan(boundaries, token_ids, fixed)])[0]
        return ScopedAlignment(
            tuple(refined[1:1 + len(left)]),
            tuple(refined[len(refined) - 1 - len(right):-1]),
            generation,
        )

    def realign_around(self, audio_path, grid, boundary_index):
        """
        Smart drag: re-align everything between the anchors surrounding a moved boundary.

        The grid passed in is not modified.

        Returns:
            new PhonemeGrid
        """
        result = grid.copy()
        left, right = result.find_surrounding_anchors(boundary_index)
        left, pivot, right = result.merge_for_smart_drag(left, boundary_index, right)
        left_tokens = result.tokens(left)
        right_tokens = result.tokens(pivot)

        if self.is_available and not self.is_manual_mode and audio_path is not None:
            scoped = self.align_scoped(
                audio_path, result.boundaries[left].time, result.boundaries[pivot].time,
                result.boundaries[right].time, left_tokens, right_tokens,
            )
            result.expand_interval(pivot, right_tokens, scoped.right)
            result.expand_interval(left, left_tokens, scoped.left)
            return result

        iv_left, iv_right = result.interval(left), result.interval(pivot)
        result.expand_interval(pivot, right_tokens, weighted_interior_times(iv_right.start, iv_right.end, right_tokens))
        new_pivot = result.expand_interval(left, left_tokens, weighted_interior_times(iv_left.start, iv_left.end, left_tokens))
        distribute_with_pivot(result, left, new_pivot, new_pivot + max(len(right_tokens), 1))
        return result

    def realign_grid(self, audio_path, grid):
        """
        Realign a whole grid and return the new grid.

        No profile: locked anchors stay and everything between them is spaced by phoneme
        weight. Manual profile: the grid is checked against the phoneme set, multi-phoneme
        intervals are expanded, then spaced by weight. Model profile: locked interval ends
        become anchors, the flattened sequence is force-aligned and consecutive silences are
        merged.
        """
        if self.profile is None:
            return distribute_entire_grid(grid.copy())

        if self.is_manual_mode:
            invalid = grid.validate(self.profile.phoneme_set)
            if invalid:
                raise UnknownPhonemeError(
                    f"{len(invalid)} interval(s) contain symbols outside {self.profile.id}", invalid,
                )
            return elastic_realign(grid.copy())

        tokens, constraints = constraints_from_grid(grid)
        if not tokens:
            return grid.copy()
        response = self.align(audio_path, tokens, constraints)
        merged = merge_silences(response.intervals, constraints)
        duration = self.ensure_audio_cache(audio_path).duration
        return grid_from_alignment(merged, constraints, duration=duration)

    def recognize(self, audio_path):
        """Most likely phoneme per 20 ms frame, without any target sequence."""
        entry = self.ensure_audio_cache(audio_path)
        if entry.num_frames == 0:
            return []
        best = entry.logits.argmax(dim=-1).tolist()
        return [self.acoustic.symbol(i) for i in best]

    # ------------------------------------------------------------- background

    def submit(self, method, *args, **kwargs):
        """
        Run one of the public methods on the background worker.

        Args:
            method: method name, e.g. "align" or "realign_grid"

        Returns:
            concurrent.futures.Future
        """
        if method not in ("align", "align_scoped", "realign_around", "realign_grid", "recognize", "ensure_audio_cache"):
            raise ValueError(f"Cannot submit {method!r}")
        if self._executor is None:
            self._executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="vocal-aligner")
        return self._executor.submit(getattr(self, method), *args, **kwargs)

    def is_current(self, result):
        """False when the cache was invalidated after `result` was computed."""
        return result.generation == self.cache.generation

    def close(self):
        if self._executor is not None:
            self._executor.shutdown(wait=True)
            self._executor = None

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()
