'''
Acoustic feature pipeline used by the boundary refiner.

Everything here is a deterministic function of its inputs: a periodic Hann STFT
power spectrum (400-point window, 80-sample hop, 16 kHz), an 80-band Slaney mel
filterbank, multi-lag spectral flux, PPG resampling and the fixed-size feature
window that is handed to the refiner model.

The window, DFT tables and filterbank are built once per process and shared.
'''

import math
from functools import lru_cache

import torch
import torch.nn.functional as F


SAMPLE_RATE = 16000
N_FFT = 400
WIN_LENGTH = 400
HOP_LENGTH = 80
NUM_BINS = N_FFT // 2 + 1
NUM_MELS = 80
FMIN = 0.0
FMAX = 8000.0
NUM_LAGS = 5

ANALYSIS_WINDOW_MS = 120
TARGET_RATE_HZ = 200
NATIVE_PPG_RATE_HZ = 50
AUDIO_WINDOW_SAMPLES = SAMPLE_RATE * ANALYSIS_WINDOW_MS // 1000  # 1920
TIME_STEPS = ANALYSIS_WINDOW_MS * TARGET_RATE_HZ // 1000  # 24
PPG_DIM = 36
FLUX_DIM = NUM_LAGS
FEATURE_DIM = PPG_DIM + FLUX_DIM

# Slaney mel scale
_F_SP = 200.0 / 3
_MIN_LOG_HZ = 1000.0
_MIN_LOG_MEL = _MIN_LOG_HZ / _F_SP
_LOG_STEP = math.log(6.4) / 27.0


@lru_cache(maxsize=None)
def hann_window():
    """Periodic Hann window of length WIN_LENGTH (float64)."""
    n = torch.arange(WIN_LENGTH, dtype=torch.float64)
    return 0.5 * (1.0 - torch.cos(2.0 * math.pi * n / WIN_LENGTH))


@lru_cache(maxsize=None)
def dft_tables():
    """
    Cosine and sine tables for the real DFT.

    Returns:
        (cos_table, sin_table), each [NUM_BINS, N_FFT] float64
    """
    k = torch.arange(NUM_BINS, dtype=torch.float64).unsqueeze(1)
    n = torch.arange(N_FFT, dtype=torch.float64).unsqueeze(0)
    angle = 2.0 * math.pi * k * n / N_FFT
    return torch.cos(angle), torch.sin(angle)


def hz_to_mel(hz):
    hz = torch.as_tensor(hz, dtype=torch.float64)
    linear = hz / _F_SP
    log_part = _MIN_LOG_MEL + torch.log(torch.clamp(hz, min=_MIN_LOG_HZ) / _MIN_LOG_HZ) / _LOG_STEP
    return torch.where(hz >= _MIN_LOG_HZ, log_part, linear)


def mel_to_hz(mel):
    mel = torch.as_tensor(mel, dtype=torch.float64)
    linear = mel * _F_SP
    log_part = _MIN_LOG_HZ * torch.exp(_LOG_STEP * (mel - _MIN_LOG_MEL))
    return torch.where(mel >= _MIN_LOG_MEL, log_part, linear)


@lru_cache(maxsize=None)
def mel_filterbank():
    """
    Slaney-normalized triangular mel filterbank.

    Matches librosa.filters.mel(sr=16000, n_fft=400, n_mels=80, fmin=0, fmax=8000,
    htk=False, norm="slaney").

    Returns:
        [NUM_MELS, NUM_BINS] float64 weights
    """
    fft_freqs = torch.arange(NUM_BINS, dtype=torch.float64) * SAMPLE_RATE / N_FFT
    mel_points = torch.linspace(float(hz_to_mel(FMIN)), float(hz_to_mel(FMAX)), NUM_MELS + 2, dtype=torch.float64)
    mel_f = mel_to_hz(mel_points)

    fdiff = torch.diff(mel_f)
    ramps = mel_f.unsqueeze(1) - fft_freqs.unsqueeze(0)

    lower = -ramps[:NUM_MELS] / fdiff[:NUM_MELS].unsqueeze(1)
    upper = ramps[2:NUM_MELS + 2] / fdiff[1:NUM_MELS + 1].unsqueeze(1)
    weights = torch.clamp(torch.minimum(lower, upper), min=0.0)

    enorm = 2.0 / (mel_f[2:NUM_MELS + 2] - mel_f[:NUM_MELS])
    return weights * enorm.unsqueeze(1)


def power_spectrum(audio):
    """
    Center-padded STFT power spectrum.

    Args:
        audio: 1-D tensor of samples at 16 kHz

    Returns:
        [1 + len(audio) // HOP_LENGTH, NUM_BINS] float64 power
    """
    audio = torch.as_tensor(audio, dtype=torch.float64).reshape(-1)
    pad = N_FFT // 2
    padded = F.pad(audio, (pad, pad))
    frames = padded.unfold(0, N_FFT, HOP_LENGTH) * hann_window()

    cos_table, sin_table = dft_tables()
    real = frames @ cos_table.T
    imag = -(frames @ sin_table.T)
    return real * real + imag * imag


def apply_mel(power):
    """[frames, NUM_BINS] power -> [frames, NUM_MELS] mel energies."""
    return power @ mel_filterbank().T


def spectral_flux(mel):
    """
    Absolute n-th order frame differences summed over mel bands, for n = 1..NUM_LAGS.

    Each lag is taken against `lag` prepended zero frames, so the output keeps
    the input frame count.

    Returns:
        [frames, NUM_LAGS] tensor
    """
    columns = []
    for lag in range(1, NUM_LAGS + 1):
        zeros = torch.zeros(lag, mel.shape[1], dtype=mel.dtype)
        delta = torch.diff(mel, n=lag, dim=0, prepend=zeros)
        columns.append(delta.abs().sum(dim=1))
    return torch.stack(columns, dim=1)


def upsample_ppg(ppg, target_len):
    """
    Linearly resample a PPG along time to `target_len` frames.

    Args:
        ppg: [src_len, dim] tensor
        target_len: number of output frames (must be positive)

    Returns:
        [target_len, dim] tensor
    """
    if target_len <= 0:
        raise ValueError(f"target_len must be positive, got {target_len}")

    src_len = ppg.shape[0]
    if src_len == target_len:
        return ppg
    if src_len == 0:
        return torch.zeros(target_len, ppg.shape[1], dtype=ppg.dtype)
    if src_len == 1:
        return ppg[0:1].repeat(target_len, 1)
    if target_len == 1:
        return ppg[0:1].clone()

    pos = torch.arange(target_len, dtype=torch.float64) * (src_len - 1) / (target_len - 1)
    lo = pos.floor().long()
    hi = pos.ceil().long().clamp(max=src_len - 1)
    frac = (pos - lo.to(torch.float64)).to(ppg.dtype).unsqueeze(1)
    return ppg[lo] * (1 - frac) + ppg[hi] * frac


def reflect_index(idx, length):
    """Map any integer index into [0, length) by reflecting about the array edges."""
    if length <= 1:
        return 0
    period = 2 * (length - 1)
    idx = idx % period
    if idx >= length:
        idx = period - idx
    return idx


def reflect_pad_slice(src, start, end):
    """
    Slice src[start:end] where out-of-range positions are mirrored back into the signal.

    An empty source gives zeros.
    """
    length = max(0, end - start)
    n = src.shape[0]
    if n == 0:
        return torch.zeros(length, dtype=src.dtype)
    if n == 1:
        return src[0].repeat(length)

    period = 2 * (n - 1)
    idx = torch.arange(start, start + length).remainder(period)
    idx = torch.where(idx >= n, period - idx, idx)
    return src[idx]


def extract_feature_window(audio, ppg, center_time):
    """
    Build the [TIME_STEPS, FEATURE_DIM] refiner input around one boundary.

    The first PPG_DIM columns hold the PPG upsampled from 50 Hz to 200 Hz, the last
    FLUX_DIM columns the spectral flux of a 120 ms audio window centered on the
    boundary. Rows past the shorter of the two streams stay zero.

    Args:
        audio: 1-D tensor at 16 kHz
        ppg: [frames, PPG_DIM] tensor at 50 Hz
        center_time: boundary time in seconds

    Returns:
        float32 tensor [TIME_STEPS, FEATURE_DIM]
    """
    audio = torch.as_tensor(audio, dtype=torch.float32).reshape(-1)
    window = torch.zeros(TIME_STEPS, FEATURE_DIM, dtype=torch.float32)

    center_sample = int(round(center_time * SAMPLE_RATE))
    start_sample = center_sample - AUDIO_WINDOW_SAMPLES // 2
    audio_slice = reflect_pad_slice(audio, start_sample, start_sample + AUDIO_WINDOW_SAMPLES)
    flux = spectral_flux(apply_mel(power_spectrum(audio_slice)))

    # Both edges are truncated toward zero independently of each other.
    half_window = ANALYSIS_WINDOW_MS / 2000.0
    ppg_len = ppg.shape[0]
    p_start = min(max(int((center_time - half_window) * NATIVE_PPG_RATE_HZ), 0), ppg_len)
    p_end = min(max(int((center_time + half_window) * NATIVE_PPG_RATE_HZ), 0), ppg_len)
    ppg_slice = ppg[p_start:max(p_start, p_end)]

    up_len = max(1, int(round(ppg_slice.shape[0] * TARGET_RATE_HZ / NATIVE_PPG_RATE_HZ)))
    if ppg_slice.shape[0] == 0:
        ppg_up = torch.zeros(up_len, PPG_DIM)
    else:
        ppg_up = upsample_ppg(ppg_slice.to(torch.float32), up_len)

    rows = min(ppg_up.shape[0], flux.shape[0], TIME_STEPS)
    window[:rows, :PPG_DIM] = ppg_up[:rows, :PPG_DIM]
    window[:rows, PPG_DIM:] = flux[:rows].to(torch.float32)
    return window


def compute_ppg(logits, ppg_dim=PPG_DIM):
    """Softmax over the last `ppg_dim` logit columns; leading special tokens are dropped."""
    logits = torch.as_tensor(logits, dtype=torch.float32)
    if logits.shape[-1] < ppg_dim:
        raise ValueError(f"Expected at least {ppg_dim} classes, got {logits.shape[-1]}")
    return F.softmax(logits[..., -ppg_dim:], dim=-1)


def log_softmax(logits):
    """Log-probabilities over all classes, used as Viterbi emissions."""
    return F.log_softmax(torch.as_tensor(logits, dtype=torch.float32), dim=-1)
