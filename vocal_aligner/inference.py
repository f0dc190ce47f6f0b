'''
ONNX Runtime adapters for the two external models.

AcousticModel: raw waveform -> per-frame phoneme logits at 50 Hz. The vocabulary lives
next to the model file with a .txt extension, one symbol per line, line number = class id.

RefinerEngine: (feature window, left phoneme id, right phoneme id) -> boundary offset in
milliseconds. Its metadata lives next to the model with a .yaml extension. A refiner
that fails to load is not an error; it simply reports zero offsets.
'''

import logging
import os

import numpy as np
import onnxruntime as ort
import torch

from .exceptions import BatchSizeMismatchError, ModelUnavailableError


logger = logging.getLogger(__name__)

SAMPLE_RATE = 16000
CHUNK_SECONDS = 30
CHUNK_SAMPLES = CHUNK_SECONDS * SAMPLE_RATE
CONTEXT_PAD = 200

REQUIRED_METADATA_FIELDS = ("feature_dim", "time_steps", "num_phonemes", "ppg_dim", "flux_dim")


def default_providers():
    """CUDA when onnxruntime was built with it, CPU otherwise."""
    available = ort.get_available_providers()
    preferred = [p for p in ("CUDAExecutionProvider", "CPUExecutionProvider") if p in available]
    return preferred or available


def create_session(model_path, providers=None):
    options = ort.SessionOptions()
    options.graph_optimization_level = ort.GraphOptimizationLevel.ORT_ENABLE_ALL
    return ort.InferenceSession(model_path, sess_options=options, providers=providers or default_providers())


def feat_extract_output_length(num_samples):
    """Number of frames the acoustic model's convolutional front end emits for `num_samples`."""
    length = (num_samples - 10) // 5 + 1
    for _ in range(4):
        length = (length - 3) // 2 + 1
    for _ in range(2):
        length = (length - 2) // 2 + 1
    return max(length, 0)


def load_vocab(vocab_path):
    """Read one symbol per line; blank lines keep their id."""
    with open(vocab_path, "r", encoding="utf-8") as f:
        symbols = [line.rstrip("\r\n").strip() for line in f]
    while symbols and symbols[-1] == "":
        symbols.pop()
    return symbols


class AcousticModel:
    """
    Phoneme recognizer used to produce Viterbi emissions and PPGs.

    Args:
        model_path: path to the .onnx file; the vocabulary is expected at the same stem with .txt
        providers: onnxruntime execution providers, defaults to CUDA then CPU
        debug: log chunk-level details
    """

    def __init__(self, model_path, providers=None, debug=False):
        self.model_path = model_path
        self.vocab_path = os.path.splitext(model_path)[0] + ".txt"
        self.debug = debug

        if not os.path.exists(model_path):
            raise ModelUnavailableError(f"Acoustic model not found: {model_path}", model_path)
        if not os.path.exists(self.vocab_path):
            raise ModelUnavailableError(f"Vocabulary not found: {self.vocab_path}", model_path)

        self.id_to_symbol = load_vocab(self.vocab_path)
        self.symbol_to_id = {}
        for idx, symbol in enumerate(self.id_to_symbol):
            self.symbol_to_id.setdefault(symbol, idx)
        self.unk_id = self.symbol_to_id.get("<unk>", 0)

        try:
            self.session = create_session(model_path, providers)
        except Exception as e:
            raise ModelUnavailableError(f"Failed to load acoustic model {model_path}: {e}", model_path) from e
        self.input_name = "audio"
        self.output_name = self.session.get_outputs()[0].name
        logger.info("Loaded acoustic model %s (%d classes)", model_path, len(self.id_to_symbol))

    @property
    def num_classes(self):
        return len(self.id_to_symbol)

    def token_id(self, symbol):
        """Class id for a phoneme symbol; "_" is read as "sil", unknown symbols map to <unk>."""
        key = "sil" if symbol == "_" else symbol
        return self.symbol_to_id.get(key, self.unk_id)

    def token_ids(self, symbols):
        return [self.token_id(s) for s in symbols]

    def symbol(self, class_id, default="sil"):
        if 0 <= class_id < len(self.id_to_symbol):
            return self.id_to_symbol[class_id]
        return default

    def forward(self, samples):
        """
        Run one chunk.

        Args:
            samples: 1-D float32 array

        Returns:
            [frames, classes] numpy logits
        """
        batch = np.asarray(samples, dtype=np.float32).reshape(1, -1)
        outputs = self.session.run([self.output_name], {self.input_name: batch})
        return np.asarray(outputs[0])[0]

    @torch.no_grad()
    def infer_logits(self, audio):
        """
        Logits for an entire recording, processed in 30 s chunks.

        Each chunk is fed with CONTEXT_PAD samples of context on both sides; only as many
        frames as the full-length model would have produced are kept per chunk.

        Args:
            audio: 1-D tensor at 16 kHz

        Returns:
            [frames, classes] float32 tensor
        """
        samples = torch.as_tensor(audio, dtype=torch.float32).reshape(-1).cpu().numpy()
        num_samples = samples.shape[0]
        padded = np.pad(samples, (CONTEXT_PAD, CONTEXT_PAD))

        pieces = []
        frames_taken = 0
        processed = 0
        for start in range(0, num_samples, CHUNK_SAMPLES):
            valid = min(CHUNK_SAMPLES, num_samples - start)
            chunk = padded[start:start + valid + 2 * CONTEXT_PAD]
            logits = self.forward(chunk)

            processed += valid
            expected = feat_extract_output_length(processed)
            take = max(0, min(expected - frames_taken, logits.shape[0]))
            pieces.append(logits[:take])
            frames_taken += take
            if self.debug:
                logger.debug("[acoustic] chunk at %d: %d samples, %d/%d frames kept", start, valid, take, logits.shape[0])

        if not pieces:
            return torch.zeros(0, self.num_classes, dtype=torch.float32)
        return torch.from_numpy(np.concatenate(pieces, axis=0).astype(np.float32))


def parse_metadata(text):
    """Parse flat `key: value` lines; ints where possible, quotes stripped."""
    meta = {}
    for line in text.splitlines():
        line = line.split("#", 1)[0].strip()
        if not line or ":" not in line:
            continue
        key, value = line.split(":", 1)
        value = value.strip().strip("'\"")
        try:
            meta[key.strip()] = int(value)
        except ValueError:
            meta[key.strip()] = value
    return meta


def validate_metadata(meta):
    """Raise ValueError when required fields are missing or inconsistent."""
    missing = [k for k in REQUIRED_METADATA_FIELDS if not isinstance(meta.get(k), int)]
    if missing:
        raise ValueError(f"missing or non-integer metadata fields: {', '.join(missing)}")
    if meta["feature_dim"] != meta["ppg_dim"] + meta["flux_dim"]:
        raise ValueError(
            f"feature_dim ({meta['feature_dim']}) != ppg_dim ({meta['ppg_dim']}) + flux_dim ({meta['flux_dim']})"
        )
    if meta.get("output_unit", "milliseconds") != "milliseconds":
        logger.warning("Refiner output_unit is %r, offsets are treated as milliseconds", meta["output_unit"])
    return meta


class RefinerEngine:
    """
    Boundary offset regressor.

    Construction never raises: when the model or its metadata cannot be loaded the
    engine is unavailable and every query returns zero offsets.
    """

    def __init__(self, model_path, providers=None, debug=False):
        self.model_path = model_path
        self.metadata_path = os.path.splitext(model_path)[0] + ".yaml" if model_path else None
        self.debug = debug
        self.metadata = {}
        self.session = None

        try:
            self._load(providers)
        except Exception as e:
            self.session = None
            logger.warning("Boundary refiner unavailable (%s): %s", model_path, e)

    def _load(self, providers):
        if not self.model_path or not os.path.exists(self.model_path):
            raise ModelUnavailableError(f"refiner model not found: {self.model_path}", self.model_path)
        if not os.path.exists(self.metadata_path):
            raise ModelUnavailableError(f"refiner metadata not found: {self.metadata_path}", self.model_path)
        with open(self.metadata_path, "r", encoding="utf-8") as f:
            self.metadata = validate_metadata(parse_metadata(f.read()))
        self.session = create_session(self.model_path, providers)
        logger.info(
            "Loaded boundary refiner %s (time_steps=%d, feature_dim=%d)",
            self.model_path, self.time_steps, self.feature_dim,
        )

    @property
    def is_available(self):
        return self.session is not None

    @property
    def time_steps(self):
        return self.metadata.get("time_steps")

    @property
    def feature_dim(self):
        return self.metadata.get("feature_dim")

    def refine(self, features, left_id, right_id):
        """Offset in ms for a single [time_steps, feature_dim] window."""
        features = np.asarray(features, dtype=np.float32)
        return float(self.refine_batch(features[np.newaxis], [left_id], [right_id])[0])

    def refine_batch(self, features, left_ids, right_ids):
        """
        Offsets in ms for a batch of windows.

        Args:
            features: [B, time_steps, feature_dim] array (or sequence of windows)
            left_ids: B phoneme ids of the interval before each boundary
            right_ids: B phoneme ids of the interval after each boundary

        Returns:
            float64 numpy array of B offsets
        """
        batch = len(features)
        if len(left_ids) != batch or len(right_ids) != batch:
            raise BatchSizeMismatchError(
                f"batch size mismatch: {batch} windows, {len(left_ids)} left ids, {len(right_ids)} right ids"
            )
        zeros = np.zeros(batch, dtype=np.float64)
        if not self.is_available or batch == 0:
            return zeros

        features = np.asarray(
            [np.asarray(f, dtype=np.float32) for f in features], dtype=np.float32
        )
        expected = (self.time_steps, self.feature_dim)
        if features.ndim != 3 or features.shape[1:] != expected:
            raise ValueError(f"feature windows must have shape (B, {expected[0]}, {expected[1]}), got {features.shape}")

        inputs = {
            "features": features,
            "left_phoneme_ids": np.asarray(left_ids, dtype=np.int64),
            "right_phoneme_ids": np.asarray(right_ids, dtype=np.int64),
        }
        try:
            outputs = self.session.run(["offset_ms"], inputs)
        except Exception as e:
            logger.error("Boundary refiner inference failed: %s", e)
            return zeros

        offsets = np.asarray(outputs[0], dtype=np.float64).reshape(-1)
        if self.debug:
            logger.debug("[refiner] %d offsets, mean %.2f ms", batch, float(offsets.mean()))
        return offsets[:batch]
