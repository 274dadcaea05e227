from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from typing import Any

import numpy as np
from scipy import signal

from spotmix.model.types import LoudnessTarget, SampleBuffer

log = logging.getLogger(__name__)

# Loudness reported when no block survives gating.
SILENCE_LUFS = -70.0
ABSOLUTE_GATE_LUFS = -70.0
RELATIVE_GATE_LU = 10.0

BLOCK_SECONDS = 0.4
HOP_SECONDS = 0.1

TRUE_PEAK_OVERSAMPLE = 4
# 20*log10(1e-10)
TRUE_PEAK_FLOOR = 1e-10

# equal weights for L/R
CHANNEL_WEIGHTS = (1.0, 1.0)


def design_k_weighting_filters(sample_rate: int) -> tuple[np.ndarray, np.ndarray, np.ndarray, np.ndarray]:
    """Biquad coefficients (b1, a1, b2, a2) for the BS.1770 K-weighting stages.

    Stage 1 is the +4 dB high shelf modelling the head; stage 2 is the RLB
    high-pass. Both are derived for the given sample rate via the bilinear
    transform.
    """

    f0 = 1681.974450955533
    q = 0.7071752369554196
    k = math.tan(math.pi * f0 / sample_rate)
    vh = 10.0 ** (3.999843853973347 / 20.0)
    vb = vh ** 0.4996667741545416

    a0 = 1.0 + k / q + k * k
    b1 = np.array([(vh + vb * k / q + k * k) / a0, 2.0 * (k * k - vh) / a0, (vh - vb * k / q + k * k) / a0])
    a1 = np.array([1.0, 2.0 * (k * k - 1.0) / a0, (1.0 - k / q + k * k) / a0])

    f0_hp = 38.13547087602444
    q_hp = 0.5003270373238773
    k = math.tan(math.pi * f0_hp / sample_rate)

    a0 = 1.0 + k / q_hp + k * k
    b2 = np.array([1.0 / a0, -2.0 / a0, 1.0 / a0])
    a2 = np.array([1.0, 2.0 * (k * k - 1.0) / a0, (1.0 - k / q_hp + k * k) / a0])

    return b1, a1, b2, a2


def k_weight(samples: np.ndarray, sample_rate: int) -> np.ndarray:
    b1, a1, b2, a2 = design_k_weighting_filters(sample_rate)
    return signal.lfilter(b2, a2, signal.lfilter(b1, a1, samples, axis=0), axis=0)


def block_loudness(buffer: SampleBuffer) -> np.ndarray:
    """Loudness of each 400 ms block (100 ms hop), in LUFS."""

    sr = buffer.sample_rate
    block = int(round(BLOCK_SECONDS * sr))
    hop = int(round(HOP_SECONDS * sr))
    n = buffer.frames
    if block <= 0 or hop <= 0 or n < block:
        return np.empty(0)

    weighted = k_weight(buffer.samples, sr)
    count = (n - block) // hop + 1

    # running sums give every block's energy without a python loop
    csum = np.concatenate([np.zeros((1, buffer.channels)), np.cumsum(weighted * weighted, axis=0)])
    starts = np.arange(count) * hop
    per_channel = (csum[starts + block] - csum[starts]) / float(block)

    weights = np.array([CHANNEL_WEIGHTS[c] if c < len(CHANNEL_WEIGHTS) else 1.0 for c in range(buffer.channels)])
    ms = np.maximum(per_channel @ weights, 0.0)
    with np.errstate(divide="ignore"):
        return -0.691 + 10.0 * np.log10(ms)


def _power_mean_lufs(blocks: np.ndarray) -> float:
    return 10.0 * math.log10(float(np.mean(10.0 ** (blocks / 10.0))))


def measure_integrated_lufs(buffer: SampleBuffer) -> float:
    """Gated integrated loudness; SILENCE_LUFS when nothing survives the gates."""

    blocks = block_loudness(buffer)
    blocks = blocks[blocks >= ABSOLUTE_GATE_LUFS]
    if blocks.size == 0:
        return SILENCE_LUFS

    relative_gate = _power_mean_lufs(blocks) - RELATIVE_GATE_LU
    blocks = blocks[blocks >= relative_gate]
    if blocks.size == 0:
        return SILENCE_LUFS
    return _power_mean_lufs(blocks)


def true_peak_linear(buffer: SampleBuffer) -> float:
    """Peak magnitude after 4x linear-interpolation oversampling of each channel."""

    x = buffer.samples
    if x.shape[0] == 0:
        return 0.0
    peak = float(np.max(np.abs(x)))
    if x.shape[0] > 1:
        cur, nxt = x[:-1], x[1:]
        for j in range(1, TRUE_PEAK_OVERSAMPLE):
            t = j / float(TRUE_PEAK_OVERSAMPLE)
            peak = max(peak, float(np.max(np.abs(cur + (nxt - cur) * t))))
    return peak


def measure_true_peak_dbtp(buffer: SampleBuffer) -> float:
    return 20.0 * math.log10(true_peak_linear(buffer) + TRUE_PEAK_FLOOR)


@dataclass(frozen=True)
class LoudnessReport:
    measured_lufs: float
    measured_true_peak_dbtp: float
    gain_db: float
    limiting_gain_db: float
    final_lufs: float
    final_true_peak_dbtp: float

    @property
    def limited(self) -> bool:
        return self.limiting_gain_db < 0.0

    def to_dict(self) -> dict[str, Any]:
        return {
            "measured_lufs": self.measured_lufs,
            "measured_true_peak_dbtp": self.measured_true_peak_dbtp,
            "gain_db": self.gain_db,
            "limiting_gain_db": self.limiting_gain_db,
            "final_lufs": self.final_lufs,
            "final_true_peak_dbtp": self.final_true_peak_dbtp,
            "limited": self.limited,
        }


def normalize_with_report(master: SampleBuffer, target: LoudnessTarget) -> tuple[SampleBuffer, LoudnessReport]:
    """Bring master to the target loudness, then scale down to the peak ceiling if needed."""

    measured = measure_integrated_lufs(master)
    measured_tp = measure_true_peak_dbtp(master)

    # gated-out material measures SILENCE_LUFS, so the gain stays finite
    gain_db = float(target.integrated_lufs) - measured
    out = master.samples * (10.0 ** (gain_db / 20.0))
    buf = SampleBuffer(out, master.sample_rate)

    limiting_db = 0.0
    tp = measure_true_peak_dbtp(buf)
    if tp > target.max_true_peak_dbtp:
        limiting_db = float(target.max_true_peak_dbtp) - tp
        buf = SampleBuffer(buf.samples * (10.0 ** (limiting_db / 20.0)), master.sample_rate)
        tp = measure_true_peak_dbtp(buf)

    report = LoudnessReport(
        measured_lufs=measured,
        measured_true_peak_dbtp=measured_tp,
        gain_db=gain_db,
        limiting_gain_db=limiting_db,
        final_lufs=measure_integrated_lufs(buf),
        final_true_peak_dbtp=tp,
    )
    log.info(
        "loudness %.2f LUFS -> %.2f LUFS (gain %.2f dB, limiting %.2f dB, peak %.2f dBTP)",
        report.measured_lufs,
        report.final_lufs,
        report.gain_db,
        report.limiting_gain_db,
        report.final_true_peak_dbtp,
    )
    return buf, report


def normalize(master: SampleBuffer, target: LoudnessTarget) -> SampleBuffer:
    return normalize_with_report(master, target)[0]
