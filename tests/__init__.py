# tests/__init__.py
"""
Test suite for Vocal Aligner.

Model-dependent tests run against small fake ONNX sessions installed with
monkeypatch, so no real model files are needed.
"""

import os

import numpy as np
import torch

from vocal_aligner.inference import feat_extract_output_length

# Test configuration
TEST_CONFIG = {
    "sample_rate": 16000,
    "test_duration": 2.0,
    "frame_duration": 0.02,
}

SPECIAL_TOKENS = ["<s>", "<pad>", "</s>", "<unk>"]
PHONEMES = ["sil", "k", "a", "i", "u", "e", "o"] + [f"p{i}" for i in range(29)]
VOCAB = SPECIAL_TOKENS + PHONEMES

REFINER_METADATA = """\
# boundary refiner
feature_dim: 41
time_steps: 24
num_phonemes: 40
ppg_dim: 36
flux_dim: 5
output_unit: milliseconds
"""


def create_dummy_audio(duration=2.0, sample_rate=16000):
    """Create dummy audio for testing."""
    samples = int(duration * sample_rate)
    return torch.randn(samples) * 0.1


def planned_log_probs(plan, num_classes=len(VOCAB), peak=10.0):
    """
    Emissions where each run of frames strongly prefers one class.

    Args:
        plan: list of (class_id, num_frames)
    """
    labels = [cls for cls, count in plan for _ in range(count)]
    logits = torch.zeros(len(labels), num_classes)
    logits[torch.arange(len(labels)), torch.tensor(labels)] = peak
    return torch.log_softmax(logits, dim=-1)


class FakeAcousticSession:
    """Stands in for the acoustic onnxruntime session; emits one planned label per frame."""

    def __init__(self, labels, num_classes=len(VOCAB), peak=10.0):
        self.labels = list(labels)
        self.num_classes = num_classes
        self.peak = peak
        self.calls = 0
        self.input_lengths = []

    def get_outputs(self):
        class _Output:
            name = "logits"
        return [_Output()]

    def run(self, output_names, inputs):
        self.calls += 1
        audio = inputs["audio"]
        self.input_lengths.append(audio.shape[1])
        frames = feat_extract_output_length(audio.shape[1])
        logits = np.zeros((1, frames, self.num_classes), dtype=np.float32)
        for t in range(frames):
            logits[0, t, self.labels[min(t, len(self.labels) - 1)]] = self.peak
        return [logits]


class FakeRefinerSession:
    """Stands in for the refiner onnxruntime session; returns a constant offset."""

    def __init__(self, offset_ms=0.0, fail=False):
        self.offset_ms = offset_ms
        self.fail = fail
        self.last_inputs = None

    def run(self, output_names, inputs):
        if self.fail:
            raise RuntimeError("inference failed")
        self.last_inputs = inputs
        batch = inputs["features"].shape[0]
        return [np.full((batch, 1), self.offset_ms, dtype=np.float32)]


def write_model_files(directory, name="rex_model", vocab=VOCAB):
    """Empty .onnx placeholder plus its vocabulary file."""
    model_path = directory / f"{name}.onnx"
    model_path.write_bytes(b"")
    (directory / f"{name}.txt").write_text("\n".join(vocab) + "\n", encoding="utf-8")
    return str(model_path)


def write_refiner_files(directory, name="rex_refiner", metadata=REFINER_METADATA):
    model_path = directory / f"{name}.onnx"
    model_path.write_bytes(b"")
    if metadata is not None:
        (directory / f"{name}.yaml").write_text(metadata, encoding="utf-8")
    return str(model_path)


def install_fake_sessions(monkeypatch, acoustic_session, refiner_session=None):
    """Route create_session() to the fakes by model file name."""
    def create_session(model_path, providers=None):
        if "refiner" in os.path.basename(str(model_path)):
            if refiner_session is None:
                raise RuntimeError("no refiner session")
            return refiner_session
        return acoustic_session

    monkeypatch.setattr("vocal_aligner.inference.create_session", create_session)
