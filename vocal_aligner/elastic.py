'''
Elastic (model-free) alignment.

Boundaries between locked anchors are placed in proportion to a fixed per-phoneme
weight: vowels and silences stretch, consonants stay short. Used for manual profiles,
when no model is loaded, and as the fallback for smart drags.
All functions edit the grid in place and never move a locked boundary.
'''

import logging


logger = logging.getLogger(__name__)

VOWEL_WEIGHT = 1.0
CONSONANT_WEIGHT = 0.3

_SILENCES = ("_", "sil", "sp", "spn")
_IPA_MONOPHTHONGS = (
    "a", "ä", "æ", "ɐ", "ɑ", "ɒ", "e", "ø", "ə", "ɘ", "ɵ", "ɞ", "ɛ", "œ", "ɜ", "ɝ",
    "i", "y", "ɨ", "ʉ", "ɪ", "ʏ", "o", "ɤ", "ɔ", "u", "ɯ", "ʊ",
)
_IPA_DIPHTHONGS = ("ai", "aɪ", "aʊ", "au", "eɪ", "ei", "oɪ", "ɔɪ", "oʊ", "ou", "ʊə", "ɪə", "eə")
_NASALIZED = ("ã", "ẽ", "ĩ", "õ", "ũ", "ɑ̃", "ɛ̃", "ɔ̃", "œ̃")
_ARPABET = (
    "AA", "AE", "AH", "AO", "AW", "AX", "AXR", "AY", "EH", "ER", "EY", "IH", "IY", "OW", "OY", "UH", "UW",
)

VOWEL_SET = frozenset(
    _SILENCES + _IPA_MONOPHTHONGS + _IPA_DIPHTHONGS + _NASALIZED + _ARPABET
    + tuple(p + s for p in _ARPABET if p not in ("AX", "AXR") for s in "012")
)
_VOWEL_SET_LOWER = frozenset(v.lower() for v in VOWEL_SET)


def phoneme_weight(token):
    """1.0 for vowels and silences, 0.3 for everything else (case-insensitive)."""
    return VOWEL_WEIGHT if token.lower() in _VOWEL_SET_LOWER else CONSONANT_WEIGHT


def interval_weight(text):
    """Summed weight of the space-separated phonemes in an interval; empty text counts as a consonant."""
    tokens = text.split()
    if not tokens:
        return CONSONANT_WEIGHT
    return sum(phoneme_weight(t) for t in tokens)


def _redistribute(grid, left, right):
    weights = [interval_weight(grid.texts[i]) for i in range(left, right)]
    total = sum(weights)
    if total <= 0:
        weights = [1.0] * len(weights)
        total = float(len(weights))

    start = grid.boundaries[left].time
    span = grid.boundaries[right].time - start
    cursor = start
    for offset, weight in enumerate(weights[:-1]):
        cursor += span * weight / total
        boundary = grid.boundaries[left + offset + 1]
        if not boundary.locked:
            boundary.time = cursor


def distribute_interval(grid, left, right):
    """Re-space the unlocked boundaries strictly between boundaries `left` and `right`."""
    if right > left + 1:
        _redistribute(grid, left, right)
    return grid


def distribute_with_pivot(grid, left, pivot, right):
    """Distribute both sides of a pivot independently; the pivot itself stays put."""
    distribute_interval(grid, left, pivot)
    distribute_interval(grid, pivot, right)
    return grid


def anchor_indices(grid):
    """Locked boundaries plus the two grid edges, ascending."""
    anchors = {0, grid.last_boundary}
    anchors.update(i for i, b in enumerate(grid.boundaries) if b.locked)
    return sorted(anchors)


def distribute_entire_grid(grid):
    anchors = anchor_indices(grid)
    for left, right in zip(anchors, anchors[1:]):
        distribute_interval(grid, left, right)
    return grid


def weighted_interior_times(start, end, tokens):
    """Placeholder boundary times splitting [start, end] by phoneme weight."""
    weights = [phoneme_weight(t) for t in tokens]
    total = sum(weights)
    times, cursor = [], start
    for w in weights[:-1]:
        cursor += (end - start) * w / total
        times.append(cursor)
    return times


def expand_all_intervals(grid):
    """Split every multi-phoneme interval into single-phoneme intervals with unlocked boundaries."""
    expanded = 0
    for i in range(len(grid.texts) - 1, -1, -1):
        tokens = grid.tokens(i)
        if len(tokens) > 1:
            iv = grid.interval(i)
            grid.expand_interval(i, tokens, weighted_interior_times(iv.start, iv.end, tokens))
            expanded += 1
    if expanded:
        logger.debug("[elastic] expanded %d multi-phoneme intervals", expanded)
    return grid


def elastic_realign(grid):
    """Expand multi-phoneme intervals, then distribute the whole grid between its anchors."""
    expand_all_intervals(grid)
    return distribute_entire_grid(grid)
