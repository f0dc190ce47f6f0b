import json
import logging
import os

import click

from . import __version__
from .audio import SAMPLE_RATE, load_audio
from .core import VocalAligner
from .forced_alignment import FRAME_DURATION, AlignmentConstraint, check_constraints
from .grid import PhonemeGrid
from .presets import PRESETS, ManualProfile, get_preset
from .utils import fix_silences, frames_to_intervals, intervals_to_dicts, response_to_dict


def parse_anchor(value):
    """'1.25:4' -> AlignmentConstraint(1.25, 4)"""
    try:
        time_str, index_str = value.split(":", 1)
        return AlignmentConstraint(float(time_str), int(index_str))
    except ValueError:
        raise click.BadParameter(f"expected TIME:INDEX, got {value!r}")


def read_phonemes(path):
    with open(path, "r", encoding="utf-8") as f:
        return f.read().split()


@click.command()
@click.argument('audio_path', type=click.Path(exists=True))
@click.argument('phonemes_path', type=click.Path(exists=True))
@click.argument('output_path', type=click.Path())
@click.option('--preset', type=click.Choice(PRESETS), default=None,
              help='Built-in model profile')
@click.option('--model', 'model_path', type=click.Path(exists=True), default=None,
              help='Acoustic model (.onnx); vocabulary expected next to it as .txt')
@click.option('--refiner', 'refiner_path', type=click.Path(), default=None,
              help='Boundary refiner (.onnx); metadata expected next to it as .yaml')
@click.option('--models-dir', type=click.Path(), default=None,
              help='Directory holding preset model files')
@click.option('--providers', default=None,
              help='Comma-separated onnxruntime execution providers, e.g. CPUExecutionProvider')
@click.option('--manual', is_flag=True, default=False,
              help='Elastic alignment without a model')
@click.option('--anchor', 'anchors', multiple=True, callback=lambda ctx, param, v: [parse_anchor(a) for a in v],
              help='Anchor TIME:INDEX, tokens before INDEX end by TIME seconds (repeatable)')
@click.option('--recognize', is_flag=True, default=False,
              help='Write free phoneme recognition instead of forced alignment')
@click.option('--fix-silences', 'fix_silences_flag', is_flag=True, default=False,
              help='Mark blank intervals as "_" and merge consecutive silences in the output')
@click.option('--debug/--no-debug', default=False,
              help='Enable detailed debug output')
@click.version_option(__version__, '--version', '-v', message='%(version)s')
def main(audio_path, phonemes_path, output_path, preset, model_path, refiner_path, models_dir,
         providers, manual, anchors, recognize, fix_silences_flag, debug):
    """
    Vocal Aligner - Align a phoneme sequence to a recording.

    AUDIO_PATH: Path to audio file (.wav, .flac, ...)
    PHONEMES_PATH: Text file with whitespace-separated phonemes
    OUTPUT_PATH: Path for output intervals (.json)

    Example:
        valign song.wav phonemes.txt out.json --model rex_model.onnx --anchor 2.0:4
    """
    logging.basicConfig(
        level=logging.DEBUG if debug else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    os.makedirs(os.path.dirname(os.path.abspath(output_path)), exist_ok=True)

    tokens = read_phonemes(phonemes_path)
    if not tokens and not recognize:
        click.echo(f"✗ No phonemes in {phonemes_path}", err=True)
        raise click.Abort()

    try:
        if manual or not (preset or model_path):
            profile = get_preset(preset) if preset else None
            if profile is None or not profile.is_manual_mode:
                profile = ManualProfile("manual")
            aligner = VocalAligner(profile=profile, debug=debug)
        else:
            aligner = VocalAligner(preset=preset, model_path=model_path, refiner_path=refiner_path,
                                   models_dir=models_dir, debug=debug,
                                   providers=[p.strip() for p in providers.split(",")] if providers else None)

        if recognize:
            symbols = aligner.recognize(audio_path)
            result = {"status": "success", "intervals": intervals_to_dicts(frames_to_intervals(symbols, FRAME_DURATION))}
        elif aligner.is_manual_mode:
            duration = load_audio(audio_path).shape[0] / SAMPLE_RATE
            check_constraints(anchors, len(tokens), duration)
            grid = PhonemeGrid.from_tokens([" ".join(tokens)], duration)
            for anchor in sorted(anchors, key=lambda a: a.phoneme_index):
                _lock_anchor(grid, anchor)
            grid = aligner.realign_grid(audio_path, grid)
            if fix_silences_flag:
                fix_silences(grid)
            result = {"status": "success", "intervals": intervals_to_dicts(grid.to_alignment_intervals()),
                      "constraints": [a._asdict() for a in anchors]}
        else:
            check_constraints(anchors, len(tokens))
            result = response_to_dict(aligner.align(audio_path, tokens, anchors))
            if fix_silences_flag:
                grid = PhonemeGrid.from_intervals([(iv["start"], iv["end"], iv["text"]) for iv in result["intervals"]])
                fix_silences(grid)
                result["intervals"] = intervals_to_dicts(grid.to_alignment_intervals())

        with open(output_path, "w", encoding="utf-8") as f:
            json.dump(result, f, ensure_ascii=False, indent=2)

        click.echo(f"✅ {len(result['intervals'])} intervals written to {output_path}")

    except KeyboardInterrupt:
        click.echo("\n⏹️  Processing interrupted by user", err=True)
        raise click.Abort()

    except Exception as e:
        click.echo(f"✗ Error during processing: {e}", err=True)
        if debug:
            import traceback
            click.echo(traceback.format_exc(), err=True)
        raise click.Abort()


def _lock_anchor(grid, anchor):
    """Split the single phrase interval so that `anchor.phoneme_index` tokens end at `anchor.time`."""
    consumed = 0
    for i, text in enumerate(grid.texts):
        tokens = text.split()
        if consumed + len(tokens) > anchor.phoneme_index > consumed:
            cut = anchor.phoneme_index - consumed
            grid.insert_boundary(i, anchor.time, " ".join(tokens[:cut]), " ".join(tokens[cut:]), locked=True)
            return
        consumed += len(tokens)
        if consumed == anchor.phoneme_index:
            grid.boundaries[i + 1].locked = True
            return


if __name__ == '__main__':
    main()
