from __future__ import annotations

import math

import numpy as np
import pytest

from spotmix.audio.loudness import (
    SILENCE_LUFS,
    design_k_weighting_filters,
    measure_integrated_lufs,
    measure_true_peak_dbtp,
    normalize,
    normalize_with_report,
)
from spotmix.model.types import LoudnessTarget, SampleBuffer

SR = 48000


def _sine(amp: float, seconds: float = 3.0, freq: float = 1000.0, sr: int = SR) -> SampleBuffer:
    t = np.arange(int(seconds * sr)) / float(sr)
    x = amp * np.sin(2.0 * math.pi * freq * t)
    return SampleBuffer(np.stack([x, x], axis=1), sr)


def test_k_weighting_matches_published_48k_coefficients() -> None:
    b1, a1, b2, a2 = design_k_weighting_filters(48000)
    assert b1 == pytest.approx([1.53512485958697, -2.69169618940638, 1.19839281085285], rel=1e-6)
    assert a1 == pytest.approx([1.0, -1.69065929318241, 0.73248077421585], rel=1e-6)
    assert a2 == pytest.approx([1.0, -1.99004745483398, 0.99007225036621], rel=1e-6)
    assert b2[0] == pytest.approx(-b2[1] / 2.0)


def test_stereo_sine_loudness_tracks_level() -> None:
    # 1 kHz stereo sine: LUFS ~= dBFS of its amplitude
    assert measure_integrated_lufs(_sine(0.5)) == pytest.approx(-6.02, abs=0.2)
    assert measure_integrated_lufs(_sine(0.05)) == pytest.approx(-26.02, abs=0.2)


def test_silence_and_short_buffers_measure_floor() -> None:
    assert measure_integrated_lufs(SampleBuffer.silence(2.0, sample_rate=SR)) == SILENCE_LUFS
    assert measure_integrated_lufs(SampleBuffer.silence(0.0, sample_rate=SR)) == SILENCE_LUFS
    # shorter than one 400 ms block
    assert measure_integrated_lufs(_sine(0.5, seconds=0.2)) == SILENCE_LUFS
    assert measure_true_peak_dbtp(SampleBuffer.silence(1.0, sample_rate=SR)) == pytest.approx(-200.0)


def test_silent_buffer_normalizes_without_nan() -> None:
    out, rep = normalize_with_report(SampleBuffer.silence(1.0, sample_rate=SR), LoudnessTarget())
    assert np.all(np.isfinite(out.samples))
    assert not np.any(out.samples)
    assert math.isfinite(rep.gain_db)
    assert math.isfinite(rep.limiting_gain_db)

    empty = normalize(SampleBuffer.silence(0.0, sample_rate=SR), LoudnessTarget())
    assert empty.frames == 0


def test_sub_block_tone_gets_gain_from_floor() -> None:
    # shorter than one 400 ms block, so nothing survives the gates
    out, rep = normalize_with_report(_sine(0.1, seconds=0.3), LoudnessTarget(sample_rate=SR))
    assert rep.measured_lufs == SILENCE_LUFS
    assert rep.gain_db == pytest.approx(54.0)
    assert rep.limited
    assert rep.final_true_peak_dbtp == pytest.approx(-2.0, abs=1e-6)
    assert np.all(np.isfinite(out.samples))


def test_true_peak_at_nyquist() -> None:
    x = np.tile([1.0, -1.0], 1000)
    buf = SampleBuffer(np.stack([x, x], axis=1), SR)
    assert measure_true_peak_dbtp(buf) >= 0.0


def test_true_peak_sees_between_samples() -> None:
    x = np.zeros(16)
    x[7] = 0.5
    buf = SampleBuffer(x, SR)
    assert measure_true_peak_dbtp(buf) == pytest.approx(20.0 * math.log10(0.5), abs=1e-6)


def test_normalize_reaches_target_loudness() -> None:
    out, rep = normalize_with_report(_sine(0.02), LoudnessTarget(integrated_lufs=-16.0, sample_rate=SR))
    assert rep.final_lufs == pytest.approx(-16.0, abs=0.01)
    assert not rep.limited
    assert rep.final_true_peak_dbtp <= -2.0
    assert measure_integrated_lufs(out) == pytest.approx(-16.0, abs=0.01)


def test_normalize_limits_peaky_material_to_ceiling() -> None:
    buf = _sine(0.01)
    spiky = buf.samples.copy()
    spiky[SR, :] = 0.9
    out, rep = normalize_with_report(SampleBuffer(spiky, SR), LoudnessTarget(sample_rate=SR))
    assert rep.limited
    assert rep.final_true_peak_dbtp == pytest.approx(-2.0, abs=1e-6)
    assert rep.final_lufs < -16.0
    assert measure_true_peak_dbtp(out) <= -2.0 + 1e-6


def test_normalized_buffer_is_unchanged_by_second_pass() -> None:
    target = LoudnessTarget(sample_rate=SR)
    for src in (_sine(0.3), _sine(0.02)):
        once = normalize(src, target)
        twice = normalize(once, target)
        assert np.allclose(once.samples, twice.samples, atol=1e-9)
