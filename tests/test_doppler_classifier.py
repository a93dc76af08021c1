"""Tests for the Doppler direction classifier."""

import numpy as np
import pytest

from doppler_classifier import DopplerClassifier, DopplerDirection, LobeWidth
from signal_processing import SpectralAnalyzer

from conftest import BUFFER_SIZE, SAMPLE_RATE, make_tone_frame


RESOLUTION = SAMPLE_RATE / BUFFER_SIZE
EMITTED = 18500.0
CENTER = int(round(EMITTED / RESOLUTION))

A = DopplerDirection.APPROACHING
R = DopplerDirection.RECEDING
S = DopplerDirection.STATIONARY


def boosted_spectrum(left: int = 0, right: int = 0, center: int = CENTER) -> np.ndarray:
    """Floor at 0 dB, emitted bin at 60 dB, ``left``/``right`` bins just below it."""
    spectrum = np.zeros(BUFFER_SIZE // 2)
    spectrum[center] = 60.0
    if left:
        spectrum[center - left:center] = 59.5
    if right:
        spectrum[center + 1:center + 1 + right] = 59.5
    return spectrum


@pytest.fixture
def classifier():
    return DopplerClassifier(SAMPLE_RATE, BUFFER_SIZE, ratio=0.85, window=10, small_diff=2, history=5)


class TestLobeMeasurement:

    def test_counts_each_side(self, classifier):
        lobe = classifier.measure_lobe(boosted_spectrum(left=2, right=5), EMITTED)
        assert lobe == LobeWidth(center_bin=CENTER, left=2, right=5)
        assert lobe.asymmetry == 3

    def test_walk_stops_at_first_weak_bin(self, classifier):
        spectrum = boosted_spectrum(right=6)
        spectrum[CENTER + 3] = 0.0
        assert classifier.measure_lobe(spectrum, EMITTED).right == 2

    def test_walk_limited_to_window(self, classifier):
        lobe = classifier.measure_lobe(boosted_spectrum(left=15, right=15), EMITTED)
        assert (lobe.left, lobe.right) == (10, 10)

    def test_bins_below_ratio_not_counted(self, classifier):
        spectrum = boosted_spectrum()
        spectrum[CENTER + 1:CENTER + 5] = 57.0  # 0.71 of the emitted level
        assert classifier.measure_lobe(spectrum, EMITTED).right == 0

    def test_stops_at_upper_edge(self, classifier):
        last = BUFFER_SIZE // 2 - 1
        spectrum = boosted_spectrum(center=last - 2, right=2, left=8)
        lobe = classifier.measure_lobe(spectrum, (last - 2) * RESOLUTION)
        assert (lobe.left, lobe.right) == (8, 2)

    def test_stops_at_lower_edge(self, classifier):
        spectrum = boosted_spectrum(center=2, left=2, right=8)
        lobe = classifier.measure_lobe(spectrum, 2 * RESOLUTION)
        assert (lobe.left, lobe.right) == (2, 8)

    def test_frequency_beyond_spectrum_clamped(self, classifier):
        spectrum = np.zeros(BUFFER_SIZE // 2)
        lobe = classifier.measure_lobe(spectrum, SAMPLE_RATE / 2)
        assert lobe.center_bin == BUFFER_SIZE // 2 - 1
        assert lobe.right == 0


class TestSingleCycleVote:

    def test_right_boost_is_approaching(self, classifier):
        assert classifier.vote(classifier.measure_lobe(boosted_spectrum(right=6), EMITTED)) is A

    def test_left_boost_is_receding(self, classifier):
        assert classifier.vote(classifier.measure_lobe(boosted_spectrum(left=6), EMITTED)) is R

    @pytest.mark.parametrize("left,right", [(0, 0), (3, 4), (5, 3), (6, 6)])
    def test_balanced_within_threshold_is_stationary(self, classifier, left, right):
        lobe = classifier.measure_lobe(boosted_spectrum(left=left, right=right), EMITTED)
        assert classifier.vote(lobe) is S

    def test_threshold_is_inclusive(self, classifier):
        assert classifier.vote(LobeWidth(CENTER, 0, 2)) is S
        assert classifier.vote(LobeWidth(CENTER, 0, 3)) is A


class TestVoteSmoothing:

    def test_starts_stationary(self, classifier):
        assert classifier.direction is S
        assert classifier.votes == []

    def test_flips_only_on_three_of_five(self, classifier):
        outputs = [classifier.push(v) for v in (A, S, A, S, A)]
        assert outputs == [S, S, S, S, A]

    def test_alternating_votes_need_majority(self, classifier):
        outputs = [classifier.push(v) for v in (A, R, A, R, A, R)]
        # [A,R,A,R,A] is the first window with three agreeing votes
        assert outputs == [S, S, S, S, A, R]

    def test_no_majority_falls_back_to_stationary(self, classifier):
        for v in (A, A, R, R, S):
            classifier.push(v)
        assert classifier.direction is S

    def test_history_is_bounded(self, classifier):
        for _ in range(12):
            classifier.push(R)
        assert len(classifier.votes) == 5

    def test_classify_end_to_end(self, classifier):
        for _ in range(3):
            direction = classifier.classify(boosted_spectrum(right=7), EMITTED)
        assert direction is A
        assert classifier.last_lobe.right == 7

        for _ in range(3):
            direction = classifier.classify(boosted_spectrum(left=7), EMITTED)
        assert direction is R

    def test_pure_emitted_tone_is_stationary(self, classifier):
        analyzer = SpectralAnalyzer(BUFFER_SIZE, SAMPLE_RATE)
        spectrum = analyzer.analyze(make_tone_frame([EMITTED]))
        for _ in range(5):
            direction = classifier.classify(spectrum, EMITTED)
        assert direction is S

    def test_reset(self, classifier):
        for _ in range(3):
            classifier.push(A)
        classifier.reset()
        assert classifier.direction is S
        assert classifier.votes == []
        assert classifier.last_lobe is None


def test_direction_labels():
    assert A.label == "Moving Toward"
    assert R.label == "Moving Away"
    assert S.label == "No Movement"
