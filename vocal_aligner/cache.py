'''
Per-audio cache of decoded samples and model outputs.

Building an entry (decode, resample, acoustic inference) is expensive, so at most one
build per key runs at a time and concurrent requests wait for it. Invalidation bumps a
generation counter; builds that started under an older generation are not stored, and
callers can compare generations to drop results computed against stale data.
'''

import logging
import threading
from collections import OrderedDict
from typing import NamedTuple

import torch


logger = logging.getLogger(__name__)


class CacheEntry(NamedTuple):
    audio: torch.Tensor      # [samples] mono 16 kHz
    logits: torch.Tensor     # [frames, classes] raw model output
    log_probs: torch.Tensor  # [frames, classes] log-softmax over all classes
    ppg: torch.Tensor        # [frames, 36] softmax over phoneme classes

    @property
    def num_frames(self):
        return self.log_probs.shape[0]

    @property
    def duration(self):
        return self.audio.shape[0] / 16000.0


class AudioFeatureCache:
    """
    Thread-safe LRU map from audio identity to CacheEntry.

    Args:
        max_entries: entries kept before the least recently used one is evicted
    """

    def __init__(self, max_entries=1):
        if max_entries < 1:
            raise ValueError("max_entries must be at least 1")
        self.max_entries = max_entries
        self._entries = OrderedDict()
        self._build_locks = {}
        self._lock = threading.Lock()
        self._generation = 0

    @property
    def generation(self):
        with self._lock:
            return self._generation

    def __contains__(self, key):
        with self._lock:
            return key in self._entries

    def __len__(self):
        with self._lock:
            return len(self._entries)

    def get(self, key):
        with self._lock:
            entry = self._entries.get(key)
            if entry is not None:
                self._entries.move_to_end(key)
            return entry

    def put(self, key, entry, generation=None):
        """Store an entry; ignored when `generation` is given and no longer current."""
        with self._lock:
            if generation is not None and generation != self._generation:
                logger.debug("Discarding cache entry for %s built under generation %d", key, generation)
                return False
            self._entries[key] = entry
            self._entries.move_to_end(key)
            while len(self._entries) > self.max_entries:
                evicted, _ = self._entries.popitem(last=False)
                logger.debug("Evicted cache entry for %s", evicted)
            return True

    def get_or_build(self, key, builder):
        """
        Return the entry for `key`, calling `builder()` at most once concurrently per key.

        The builder runs outside the cache lock. If the cache is invalidated while it runs,
        the result is returned to the caller but not stored.
        """
        entry = self.get(key)
        if entry is not None:
            return entry

        with self._lock:
            build_lock = self._build_locks.setdefault(key, threading.Lock())

        with build_lock:
            entry = self.get(key)
            if entry is not None:
                return entry
            generation = self.generation
            logger.info("Building features for %s", key)
            entry = builder()
            self.put(key, entry, generation)
            return entry

    def invalidate(self, key=None):
        """Drop one entry, or everything when `key` is None, and bump the generation."""
        with self._lock:
            if key is None:
                self._entries.clear()
                self._build_locks.clear()
            else:
                self._entries.pop(key, None)
            self._generation += 1
            return self._generation
