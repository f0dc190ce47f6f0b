'''
Audio loading: any format torchaudio can read, downmixed to mono and resampled to 16 kHz.
'''

import torch
import torchaudio


SAMPLE_RATE = 16000


def load_audio(audio_path, sample_rate=SAMPLE_RATE):
    """
    Load an audio file as a mono float32 tensor.

    Returns:
        1-D tensor of samples at `sample_rate`
    """
    waveform, sr = torchaudio.load(audio_path)
    if waveform.dim() > 1 and waveform.shape[0] > 1:
        waveform = waveform.mean(dim=0, keepdim=True)
    if sr != sample_rate:
        waveform = torchaudio.functional.resample(waveform, orig_freq=sr, new_freq=sample_rate)
    return waveform.reshape(-1).to(torch.float32)
