"""
Vocal Aligner - Phoneme forced alignment for speech and singing with ONNX acoustic and boundary-refiner models.
"""

__version__ = "0.1.0"

from .core import AlignResponse, ScopedAlignment, VocalAligner
from .exceptions import AlignerError, BatchSizeMismatchError, ModelUnavailableError, UnknownPhonemeError
from .forced_alignment import AlignmentConstraint, AlignmentInterval, ViterbiAligner
from .grid import Boundary, PhonemeGrid
from .presets import ManualProfile, ModelBackedProfile, get_preset

__all__ = [
    "VocalAligner",
    "AlignResponse",
    "ScopedAlignment",
    "AlignmentConstraint",
    "AlignmentInterval",
    "ViterbiAligner",
    "PhonemeGrid",
    "Boundary",
    "ModelBackedProfile",
    "ManualProfile",
    "get_preset",
    "AlignerError",
    "ModelUnavailableError",
    "BatchSizeMismatchError",
    "UnknownPhonemeError",
    "__version__"
]
