# File: tests/test_features.py
"""
Tests for the acoustic feature pipeline.
"""

import math

import pytest
import torch

from vocal_aligner import features
from vocal_aligner.features import (
    FEATURE_DIM, NUM_BINS, NUM_MELS, PPG_DIM, TIME_STEPS,
    apply_mel, compute_ppg, extract_feature_window, hann_window, mel_filterbank,
    power_spectrum, reflect_index, reflect_pad_slice, spectral_flux, upsample_ppg,
)


class TestSpectrum:

    def test_hann_window_is_periodic(self):
        w = hann_window()
        assert w.shape == (400,)
        assert w[0].item() == pytest.approx(0.0)
        assert w[200].item() == pytest.approx(1.0)
        assert w[1].item() == pytest.approx(w[399].item())

    def test_frame_count(self):
        assert power_spectrum(torch.zeros(16000)).shape == (201, NUM_BINS)
        assert power_spectrum(torch.zeros(1920)).shape == (25, NUM_BINS)

    def test_empty_audio_gives_one_silent_frame(self):
        power = power_spectrum(torch.zeros(0))
        assert power.shape == (1, NUM_BINS)
        assert torch.count_nonzero(power) == 0

    def test_matches_torch_stft(self):
        torch.manual_seed(0)
        audio = torch.randn(4000, dtype=torch.float64)
        expected = torch.stft(
            audio, n_fft=400, hop_length=80, win_length=400,
            window=torch.hann_window(400, periodic=True, dtype=torch.float64),
            center=True, pad_mode="constant", return_complex=True,
        ).abs().pow(2).T
        assert torch.allclose(power_spectrum(audio), expected, rtol=1e-6, atol=1e-6)

    def test_tables_are_shared(self):
        assert mel_filterbank() is mel_filterbank()
        assert features.dft_tables() is features.dft_tables()


class TestMel:

    def test_filterbank_shape_and_nonnegative(self):
        fb = mel_filterbank()
        assert fb.shape == (NUM_MELS, NUM_BINS)
        assert (fb >= 0).all()

    def test_mel_scale_breakpoint(self):
        assert features.hz_to_mel(1000.0).item() == pytest.approx(15.0)
        assert features.mel_to_hz(15.0).item() == pytest.approx(1000.0)
        assert features.mel_to_hz(features.hz_to_mel(4321.0)).item() == pytest.approx(4321.0)

    def test_matches_librosa(self):
        librosa = pytest.importorskip("librosa")
        expected = librosa.filters.mel(sr=16000, n_fft=400, n_mels=80, fmin=0.0, fmax=8000.0, htk=False, norm="slaney")
        assert torch.allclose(mel_filterbank(), torch.from_numpy(expected).to(torch.float64), rtol=1e-4, atol=1e-6)

    def test_sinusoid_peaks_in_matching_band(self):
        t = torch.arange(16000, dtype=torch.float64) / 16000
        tone = torch.sin(2 * math.pi * 1000.0 * t)
        mel = apply_mel(power_spectrum(tone))
        peak_band = mel.mean(dim=0).argmax().item()
        edges = torch.linspace(0.0, features.hz_to_mel(8000.0).item(), NUM_MELS + 2, dtype=torch.float64)
        centers = features.mel_to_hz(edges[1:-1])
        assert abs(centers[peak_band].item() - 1000.0) < 80.0


class TestFlux:

    def test_shape(self):
        flux = spectral_flux(torch.rand(30, NUM_MELS, dtype=torch.float64))
        assert flux.shape == (30, 5)

    def test_constant_input_only_changes_at_onset(self):
        mel = torch.ones(10, NUM_MELS, dtype=torch.float64)
        flux = spectral_flux(mel)
        assert flux[0, 0].item() == pytest.approx(NUM_MELS)
        assert torch.count_nonzero(flux[1:, 0]) == 0
        # second order difference against two zero frames
        assert flux[1, 1].item() == pytest.approx(NUM_MELS)
        assert torch.count_nonzero(flux[2:, 1]) == 0


class TestUpsample:

    def test_same_length_is_identity(self):
        ppg = torch.rand(5, PPG_DIM)
        assert upsample_ppg(ppg, 5) is ppg

    def test_single_row_is_replicated(self):
        ppg = torch.rand(1, PPG_DIM)
        out = upsample_ppg(ppg, 4)
        assert out.shape == (4, PPG_DIM)
        assert torch.allclose(out, ppg.expand(4, -1))

    def test_linear_interpolation(self):
        ppg = torch.tensor([[0.0], [1.0]])
        out = upsample_ppg(ppg, 5)
        assert out.squeeze(1).tolist() == pytest.approx([0.0, 0.25, 0.5, 0.75, 1.0])

    def test_single_target_takes_first_row(self):
        ppg = torch.tensor([[3.0], [7.0]])
        assert upsample_ppg(ppg, 1).tolist() == [[3.0]]

    def test_non_positive_target_raises(self):
        with pytest.raises(ValueError):
            upsample_ppg(torch.rand(3, PPG_DIM), 0)


class TestReflection:

    def test_reflect_index(self):
        assert reflect_index(-1, 5) == 1
        assert reflect_index(5, 5) == 3
        assert reflect_index(8, 5) == 0
        assert reflect_index(3, 1) == 0

    def test_reflect_pad_slice(self):
        src = torch.tensor([0.0, 1.0, 2.0, 3.0])
        assert reflect_pad_slice(src, -2, 6).tolist() == [2.0, 1.0, 0.0, 1.0, 2.0, 3.0, 2.0, 1.0]

    def test_empty_source_gives_zeros(self):
        out = reflect_pad_slice(torch.zeros(0), -3, 3)
        assert out.shape == (6,)
        assert torch.count_nonzero(out) == 0


class TestFeatureWindow:

    def test_shape_and_dtype(self):
        audio = torch.randn(32000) * 0.1
        ppg = torch.softmax(torch.randn(100, PPG_DIM), dim=-1)
        window = extract_feature_window(audio, ppg, 1.0)
        assert window.shape == (TIME_STEPS, FEATURE_DIM)
        assert window.dtype == torch.float32

    def test_ppg_rows_come_from_boundary_neighbourhood(self):
        ppg = torch.zeros(100, PPG_DIM)
        ppg[:, 3] = 1.0
        window = extract_feature_window(torch.zeros(32000), ppg, 1.01)
        # frames 47..52 upsampled 4x -> 24 rows, all one-hot on class 3
        assert torch.allclose(window[:, 3], torch.ones(TIME_STEPS))
        assert torch.count_nonzero(window[:, PPG_DIM:]) == 0

    def test_file_start_is_reflected(self):
        audio = torch.randn(32000) * 0.1
        ppg = torch.softmax(torch.randn(100, PPG_DIM), dim=-1)
        window = extract_feature_window(audio, ppg, 0.0)
        assert window.shape == (TIME_STEPS, FEATURE_DIM)
        assert torch.isfinite(window).all()
        # only frames 0..2 of the PPG are inside the window; rows past 12 stay zero
        assert torch.count_nonzero(window[12:]) == 0

    def test_empty_inputs_give_zero_window(self):
        window = extract_feature_window(torch.zeros(0), torch.zeros(0, PPG_DIM), 0.5)
        assert torch.count_nonzero(window) == 0


class TestPosteriors:

    def test_ppg_drops_special_tokens(self):
        logits = torch.zeros(3, 40)
        logits[:, :4] = 50.0
        ppg = compute_ppg(logits)
        assert ppg.shape == (3, PPG_DIM)
        assert torch.allclose(ppg.sum(dim=-1), torch.ones(3))
        assert torch.allclose(ppg, torch.full((3, PPG_DIM), 1.0 / PPG_DIM))

    def test_too_few_classes_raises(self):
        with pytest.raises(ValueError):
            compute_ppg(torch.zeros(2, 10))

    def test_log_softmax_normalizes(self):
        lp = features.log_softmax(torch.randn(4, 40))
        assert torch.allclose(lp.exp().sum(dim=-1), torch.ones(4), atol=1e-5)
