"""Tests for the scalar position estimator."""

import math

import numpy as np
import pytest

from tracking.kalman_filter import KalmanFilter1D


def steady_state_covariance(R, Q):
    # fixed point of P = (P + R) * Q / (P + R + Q)
    return (-R + math.sqrt(R * R + 4 * R * Q)) / 2


class TestFirstUpdate:
    def test_defaults(self):
        kf = KalmanFilter1D()
        assert kf.R == 0.01
        assert kf.Q == 3.0
        assert (kf.A, kf.B, kf.C) == (1.0, 0.0, 1.0)

    def test_state_unset_before_first_measurement(self):
        kf = KalmanFilter1D()
        assert kf.estimate is None
        assert kf.error_covariance is None
        assert not kf.initialized

    @pytest.mark.parametrize("z", [0.0, 10.0, -33.8938, 35.5018, 1e-12])
    def test_first_call_returns_measurement(self, z):
        kf = KalmanFilter1D()
        assert kf.update(z) == z

    def test_first_call_sets_covariance_to_process_noise(self):
        kf = KalmanFilter1D(measurement_noise=0.5, process_noise=7.0)
        kf.update(1.0)
        assert kf.initialized
        assert kf.error_covariance == 7.0

    def test_first_call_divides_by_observation(self):
        kf = KalmanFilter1D(process_noise=4.0, observation=2.0)
        assert kf.update(10.0) == 5.0
        assert kf.error_covariance == pytest.approx(1.0)


class TestScenario:
    def test_constant_then_jump(self):
        kf = KalmanFilter1D(measurement_noise=0.01, process_noise=3)
        assert kf.update(10) == 10
        assert kf.update(10) == 10

        jumped = kf.update(20)
        assert 10 < jumped < 20

        # same equations worked by hand
        P = 3.0
        P = (P + 0.01) - (P + 0.01) / (P + 0.01 + 3) * (P + 0.01)
        pred = P + 0.01
        K = pred / (pred + 3)
        assert jumped == pytest.approx(10 + K * 10, abs=1e-9)
        assert jumped == pytest.approx(13.35179, abs=1e-4)

    def test_matching_input_leaves_estimate_unchanged(self):
        kf = KalmanFilter1D()
        kf.update(42.5)
        for _ in range(10):
            assert kf.update(42.5) == 42.5


class TestCovariance:
    def test_shrinks_monotonically_under_constant_input(self):
        kf = KalmanFilter1D(measurement_noise=0.01, process_noise=3)
        covariances = []
        for _ in range(300):
            kf.update(5.0)
            covariances.append(kf.error_covariance)

        for prev, cur in zip(covariances, covariances[1:]):
            assert cur <= prev + 1e-15
        assert covariances[-1] == pytest.approx(steady_state_covariance(0.01, 3), rel=1e-6)

    def test_covariance_ignores_measurement_values(self):
        a = KalmanFilter1D()
        b = KalmanFilter1D()
        for za, zb in zip([1.0, 2.0, 3.0, 4.0], [100.0, -5.0, 0.0, 7.0]):
            a.update(za)
            b.update(zb)
        assert a.error_covariance == b.error_covariance


class TestSmoothing:
    def test_converges_and_damps_bounded_noise(self):
        rng = np.random.default_rng(7)
        true_value = 31.2
        raw = true_value + rng.uniform(-0.5, 0.5, size=300)

        kf = KalmanFilter1D()
        estimates = np.array([kf.update(float(z)) for z in raw])

        assert abs(estimates[-1] - true_value) < 0.2
        assert abs(estimates[-50:].mean() - true_value) < 0.1
        assert estimates[20:].var() < raw[20:].var()

    def test_larger_process_noise_damps_a_jump_more(self):
        steady = [0.0] * 10 + [10.0]
        heavy = KalmanFilter1D(measurement_noise=0.01, process_noise=10.0)
        light = KalmanFilter1D(measurement_noise=0.01, process_noise=1.0)

        heavy_out = [heavy.update(z) for z in steady]
        light_out = [light.update(z) for z in steady]

        assert heavy_out[-1] - heavy_out[-2] < light_out[-1] - light_out[-2]

    def test_larger_measurement_noise_responds_to_a_jump_faster(self):
        # measurement_noise feeds the predicted covariance, so it raises the gain
        steady = [0.0] * 10 + [10.0]
        loose = KalmanFilter1D(measurement_noise=1.0, process_noise=3.0)
        tight = KalmanFilter1D(measurement_noise=0.01, process_noise=3.0)

        loose_out = [loose.update(z) for z in steady]
        tight_out = [tight.update(z) for z in steady]

        assert loose_out[-1] - loose_out[-2] > tight_out[-1] - tight_out[-2]

    def test_output_stays_finite(self):
        rng = np.random.default_rng(3)
        kf = KalmanFilter1D()
        for z in rng.normal(0, 1000, size=500):
            assert math.isfinite(kf.update(float(z)))


class TestDeterminism:
    def test_identical_inputs_give_identical_outputs(self):
        rng = np.random.default_rng(11)
        zs = [float(z) for z in rng.normal(35.0, 0.001, size=100)]

        a = KalmanFilter1D(0.02, 2.5)
        b = KalmanFilter1D(0.02, 2.5)
        assert [a.update(z) for z in zs] == [b.update(z) for z in zs]


class TestControlInput:
    def test_ignored_with_default_model(self):
        a = KalmanFilter1D()
        b = KalmanFilter1D()
        for z in [1.0, 2.0, 1.5]:
            assert a.update(z) == b.update(z, control_input=100.0)

    def test_shifts_prediction_when_control_enabled(self):
        kf = KalmanFilter1D(control=1.0)
        kf.update(0.0)
        # measurement equals the controlled prediction, so nothing to correct
        assert kf.update(2.0, control_input=2.0) == pytest.approx(2.0)


class TestDegradation:
    def test_nan_poisons_later_estimates(self):
        kf = KalmanFilter1D()
        kf.update(1.0)
        kf.update(float("nan"))
        assert math.isnan(kf.update(1.0))
        assert math.isnan(kf.update(2.0))

    def test_nan_first_measurement(self):
        kf = KalmanFilter1D()
        assert math.isnan(kf.update(float("nan")))
