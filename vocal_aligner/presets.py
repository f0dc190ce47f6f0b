'''
Model profiles.

A profile is either model-backed (acoustic model + optional boundary refiner) or
manual (elastic alignment only). Relative model files resolve against a models
directory: the `models_dir` argument, else $VOCAL_ALIGNER_MODELS, else ./resources/models.
'''

import os


MODELS_DIR_ENV = "VOCAL_ALIGNER_MODELS"
DEFAULT_MODELS_DIR = os.path.join("resources", "models")

JAPANESE_PHONEMES = (
    "a", "i", "ɯ", "e", "o", "k", "ɡ", "t", "d", "p", "b", "s", "z", "ɕ", "h", "ɸ", "m", "n",
    "ɴ", "j", "ɾ", "w", "v", "ʔ", "tɕ", "ts", "dʑ", "kʲ", "ɡʲ", "ç", "bʲ", "pʲ", "mʲ", "nʲ",
    "ɾʲ", "br", "sil", "sp", "_",
)

ENGLISH_PHONEMES = (
    "ɑ", "æ", "ʌ", "ə", "ɔ", "aʊ", "aɪ", "b", "tʃ", "d", "ð", "ɛ", "ɝ", "eɪ", "f", "ɡ", "h",
    "ɪ", "i", "dʒ", "k", "l", "m", "n", "ŋ", "oʊ", "ɔɪ", "p", "ɹ", "s", "ʃ", "t", "θ", "ʊ",
    "u", "v", "w", "j", "z", "ʒ", "sil", "sp", "_",
)


PRESETS = ("rex_model", "rex_manual", "manual_en")


def resolve_models_dir(models_dir=None):
    return models_dir or os.environ.get(MODELS_DIR_ENV) or DEFAULT_MODELS_DIR


class _Profile:
    is_manual_mode = False

    def __init__(self, id, display_name=None, encoding="ipa", phoneme_set=()):
        self.id = id
        self.display_name = display_name or id
        self.encoding = encoding
        self.phoneme_set = tuple(phoneme_set)

    def validate_symbol(self, symbol):
        """Every symbol is valid when the profile declares no phoneme set."""
        return not self.phoneme_set or symbol in self.phoneme_set

    def __repr__(self):
        return f"{type(self).__name__}({self.id!r})"


class ModelBackedProfile(_Profile):
    """
    Profile that aligns with an acoustic model.

    Args:
        model_file: acoustic .onnx, absolute or relative to the models directory
        refiner_file: boundary refiner .onnx, or None to skip refinement
    """

    def __init__(self, id, model_file, refiner_file=None, display_name=None, encoding="ipa", phoneme_set=()):
        super().__init__(id, display_name, encoding, phoneme_set)
        self.model_file = model_file
        self.refiner_file = refiner_file

    def model_path(self, models_dir=None):
        return os.path.join(resolve_models_dir(models_dir), self.model_file)

    def refiner_path(self, models_dir=None):
        if not self.refiner_file:
            return None
        return os.path.join(resolve_models_dir(models_dir), self.refiner_file)


class ManualProfile(_Profile):
    """Profile without a model; alignment is purely elastic."""
    is_manual_mode = True


def get_preset(name, models_dir=None):
    """
    Built-in profiles.

    Args:
        name: "rex_model", "rex_manual" or "manual_en"
        models_dir: directory the model files are pinned to; left relative when None
    """
    def model_file(filename):
        return os.path.join(os.path.abspath(models_dir), filename) if models_dir else filename

    if name == "rex_model":
        return ModelBackedProfile(
            "rex_model", model_file("rex_model.onnx"), model_file("rex_refiner.onnx"),
            display_name="Rex (Japanese, model)", encoding="ipa", phoneme_set=JAPANESE_PHONEMES,
        )
    elif name == "rex_manual":
        return ManualProfile("rex_manual", "Rex (Japanese, manual)", "ipa", JAPANESE_PHONEMES)
    elif name == "manual_en":
        return ManualProfile("manual_en", "English (manual)", "ipa", ENGLISH_PHONEMES)
    raise ValueError(f"Unknown preset {name!r}; available: {', '.join(PRESETS)}")
