"""
Unit tests for planar IMU correction, bias estimation and preintegration.
"""

import unittest

import numpy as np
from numpy.testing import assert_allclose

from rsfusion.sensors.imu_models import (
    GRAVITY,
    correct_accel,
    correct_gyro,
    estimate_imu_bias,
    imu_increment_std,
    preintegrate_imu,
    propagate_imu_state,
    sample_intervals,
)


class TestCorrection(unittest.TestCase):

    def test_bias_removed(self):
        assert_allclose(correct_gyro(np.array([0.1, 0.2, 0.3]), np.array([0.1, 0.1, 0.1])), [0.0, 0.1, 0.2])
        assert_allclose(correct_accel(np.array([0.0, 0.0, 9.9]), np.array([0.0, 0.0, 0.09])), [0.0, 0.0, 9.81])

    def test_noise_removed(self):
        assert_allclose(correct_gyro(np.ones(3), np.zeros(3), np.full(3, 0.5)), np.full(3, 0.5))


class TestBiasEstimate(unittest.TestCase):

    def test_static_samples(self):
        f = np.tile([0.1, -0.05, GRAVITY + 0.02], (200, 1))
        w = np.tile([0.001, 0.0, -0.002], (200, 1))
        assert_allclose(estimate_imu_bias(f, w), [0.1, -0.05, 0.02, 0.001, 0.0, -0.002], atol=1e-12)

    def test_empty(self):
        self.assertIsNone(estimate_imu_bias(np.zeros((0, 3)), np.zeros((0, 3))))


class TestSampleIntervals(unittest.TestCase):

    def test_sum_to_interval(self):
        dt = sample_intervals(np.array([0.3, 0.6, 0.9]), 0.0, 1.0)
        assert_allclose(dt, [0.3, 0.3, 0.4])
        self.assertAlmostEqual(dt.sum(), 1.0)

    def test_empty(self):
        self.assertEqual(len(sample_intervals(np.zeros(0), 0.0, 1.0)), 0)


class TestPreintegration(unittest.TestCase):

    def test_stationary(self):
        n = 100
        dp, dv, dyaw = preintegrate_imu(
            np.full(n, 0.01), np.tile([0.0, 0.0, GRAVITY], (n, 1)), np.zeros((n, 3)), np.zeros(6)
        )
        assert_allclose(dp, np.zeros(3), atol=1e-12)
        assert_allclose(dv, np.zeros(3), atol=1e-12)
        self.assertAlmostEqual(dyaw, 0.0)

    def test_constant_forward_acceleration(self):
        """p = ½ a T², v = a T."""
        n, a = 1000, 2.0
        dp, dv, _ = preintegrate_imu(
            np.full(n, 0.001), np.tile([a, 0.0, GRAVITY], (n, 1)), np.zeros((n, 3)), np.zeros(6)
        )
        assert_allclose(dv, [2.0, 0.0, 0.0], atol=1e-9)
        assert_allclose(dp, [1.0, 0.0, 0.0], atol=1e-9)

    def test_bias_compensated(self):
        n = 100
        bias = np.array([0.2, 0.0, 0.1, 0.0, 0.0, 0.05])
        f = np.tile([0.2, 0.0, GRAVITY + 0.1], (n, 1))
        w = np.tile([0.0, 0.0, 0.05], (n, 1))
        dp, dv, dyaw = preintegrate_imu(np.full(n, 0.01), f, w, bias)
        assert_allclose(dv, np.zeros(3), atol=1e-12)
        self.assertAlmostEqual(dyaw, 0.0)

    def test_heading_integration(self):
        n = 100
        _, _, dyaw = preintegrate_imu(
            np.full(n, 0.01), np.tile([0.0, 0.0, GRAVITY], (n, 1)), np.tile([0.0, 0.0, 0.5], (n, 1)), np.zeros(6)
        )
        self.assertAlmostEqual(dyaw, 0.5)

    def test_circular_motion_velocity(self):
        """Centripetal specific force turns the velocity by the heading change."""
        speed, omega, T, n = 5.0, 0.1, 2.0, 2000
        f = np.tile([0.0, speed * omega, GRAVITY], (n, 1))
        w = np.tile([0.0, 0.0, omega], (n, 1))
        dp, dv, dyaw = preintegrate_imu(np.full(n, T / n), f, w, np.zeros(6))

        v0 = np.array([speed, 0.0, 0.0])
        p1, v1, yaw1 = propagate_imu_state(np.zeros(3), v0, 0.0, T, dp, dv, dyaw)

        assert_allclose(v1, speed * np.array([np.cos(omega * T), np.sin(omega * T), 0.0]), atol=1e-4)
        radius = speed / omega
        expected_p = radius * np.array([np.sin(omega * T), 1.0 - np.cos(omega * T), 0.0])
        assert_allclose(p1, expected_p, atol=1e-3)
        self.assertAlmostEqual(yaw1, omega * T)

    def test_no_samples(self):
        dp, dv, dyaw = preintegrate_imu(np.zeros(0), np.zeros((0, 3)), np.zeros((0, 3)), np.zeros(6))
        assert_allclose(dp, np.zeros(3))
        self.assertEqual(dyaw, 0.0)


class TestPropagation(unittest.TestCase):

    def test_rotates_increments_by_start_heading(self):
        p1, v1, yaw1 = propagate_imu_state(
            np.zeros(3), np.array([1.0, 0.0, 0.0]), np.pi / 2, 1.0,
            np.array([1.0, 0.0, 0.0]), np.array([1.0, 0.0, 0.0]), 0.0,
        )
        assert_allclose(p1, [1.0, 1.0, 0.0], atol=1e-12)
        assert_allclose(v1, [1.0, 1.0, 0.0], atol=1e-12)
        self.assertAlmostEqual(yaw1, np.pi / 2)

    def test_heading_wrapped(self):
        _, _, yaw1 = propagate_imu_state(np.zeros(3), np.zeros(3), 3.0, 1.0, np.zeros(3), np.zeros(3), 1.0)
        self.assertAlmostEqual(yaw1, 4.0 - 2.0 * np.pi)


class TestIncrementStd(unittest.TestCase):

    def test_layout_and_growth(self):
        std = imu_increment_std(4.0, 0.1, 0.01, 0.001, min_std=0.0)
        self.assertEqual(std.shape, (13,))
        assert_allclose(std[3:6], 0.1 * 2.0)
        assert_allclose(std[0:3], 0.1 * 8.0 / np.sqrt(3.0))
        self.assertAlmostEqual(std[6], 0.02)
        assert_allclose(std[7:], 0.002)

    def test_floor(self):
        std = imu_increment_std(0.0, 0.1, 0.01, 0.001)
        assert_allclose(std, np.full(13, 1e-3))


if __name__ == "__main__":
    unittest.main()
