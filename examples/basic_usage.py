import time
import json
from vocal_aligner import AlignmentConstraint, VocalAligner
from vocal_aligner.utils import response_to_dict

def example_forced_alignment():

    phonemes = "sil k a m i s a m a sil".split()
    audio_path = "examples/samples/kamisama.wav"

    # rex_model.onnx + rex_model.txt and rex_refiner.onnx + rex_refiner.yaml in resources/models/
    aligner = VocalAligner(preset="rex_model", models_dir="resources/models", debug=True)

    # the first five phonemes ("sil k a m i") must end by 0.82 s
    constraints = [AlignmentConstraint(0.82, 5)]

    t0 = time.time()
    response = aligner.align(audio_path, phonemes, constraints)
    t1 = time.time()

    print("Intervals:")
    print(json.dumps(response_to_dict(response), indent=4, ensure_ascii=False))
    print(f"Processing time: {t1 - t0:.2f} seconds")

    # features are cached: a second pass skips the acoustic model
    t0 = time.time()
    aligner.align(audio_path, phonemes)
    print(f"Cached processing time: {time.time() - t0:.2f} seconds")

if __name__ == "__main__":
    example_forced_alignment()
