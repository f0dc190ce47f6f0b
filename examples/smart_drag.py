'''
Re-align around a dragged boundary the way an interactive label editor would.
'''
from vocal_aligner import PhonemeGrid, VocalAligner
from vocal_aligner.elastic import elastic_realign

def print_grid(title, grid):
    print(title)
    for iv in grid.intervals():
        lock = "*" if grid.boundaries[iv.index + 1].locked else " "
        print(f"  {iv.start:7.3f} - {iv.end:7.3f}{lock} {iv.text}")

def example_smart_drag(audio_path=None):
    # a rough phrase-level labeling: locked boundaries are user anchors
    grid = PhonemeGrid.from_intervals([
        (0.00, 0.40, "_"),
        (0.40, 1.60, "k a m i"),
        (1.60, 2.90, "s a m a"),
        (2.90, 3.20, "_"),
    ])
    grid.lock(2)

    # no model needed: spread phonemes by vowel/consonant weight between anchors
    elastic_realign(grid)
    print_grid("Elastic:", grid)

    # drag the boundary between "a" and "m" and re-align only the neighbourhood
    grid.set_time(3, 0.95)
    if audio_path is None:
        aligner = VocalAligner(preset="rex_manual")
    else:
        aligner = VocalAligner(preset="rex_model", models_dir="resources/models")
    grid = aligner.realign_around(audio_path, grid, 3)
    print_grid("After drag:", grid)

if __name__ == "__main__":
    example_smart_drag()
