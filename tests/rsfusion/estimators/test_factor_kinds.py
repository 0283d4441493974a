"""Unit tests for factor residuals, payload validation and numerical Jacobians."""

import unittest

import numpy as np
from numpy.testing import assert_allclose

from rsfusion.estimators.factors import (
    FACTOR_ARITY,
    angular_rows,
    FactorKind,
    ImuMeasurement,
    OdometryMeasurement,
    PositionFixMeasurement,
    PriorMeasurement,
    imu_residual,
    numerical_jacobians,
    odometry_residual,
    position_fix_residual,
    prior_residual,
    residual_function,
    validate_measurement,
)
from rsfusion.sensors.imu_models import GRAVITY


class TestPriorAndFix(unittest.TestCase):

    def test_prior(self):
        r = prior_residual([np.array([1.0, 2.0, 3.0])], PriorMeasurement(np.array([1.0, 1.0, 1.0])))
        assert_allclose(r, [0.0, 1.0, 2.0])

    def test_angular_prior_wraps(self):
        r = prior_residual([np.array([np.pi - 0.1])], PriorMeasurement(np.array([-np.pi + 0.1]), angular=True))
        assert_allclose(r, [-0.2], atol=1e-12)

    def test_position_fix(self):
        r = position_fix_residual([np.array([5.0, 0.0, 1.0])], PositionFixMeasurement(np.array([4.0, 1.0, 1.0])))
        assert_allclose(r, [1.0, -1.0, 0.0])


class TestOdometryResidual(unittest.TestCase):

    def test_zero_for_consistent_motion(self):
        # Heading north, 2 m forward, turn by 0.1 rad
        means = [np.zeros(3), np.array([np.pi / 2]), np.array([0.0, 2.0, 0.0]), np.array([np.pi / 2 + 0.1])]
        r = odometry_residual(means, OdometryMeasurement(np.array([2.0, 0.0, 0.0]), 0.1))
        assert_allclose(r, np.zeros(4), atol=1e-12)

    def test_translation_in_start_body_frame(self):
        means = [np.zeros(3), np.array([np.pi / 2]), np.array([0.0, 2.0, 0.0]), np.array([np.pi / 2])]
        r = odometry_residual(means, OdometryMeasurement(np.zeros(3), 0.0))
        assert_allclose(r, [2.0, 0.0, 0.0, 0.0], atol=1e-12)

    def test_heading_residual_wraps(self):
        means = [np.zeros(3), np.array([np.pi - 0.05]), np.zeros(3), np.array([-np.pi + 0.05])]
        r = odometry_residual(means, OdometryMeasurement(np.zeros(3), 0.1))
        self.assertAlmostEqual(r[3], 0.0, places=12)


class TestImuResidual(unittest.TestCase):

    def test_stationary_level_imu(self):
        n = 10
        payload = ImuMeasurement(
            duration=1.0,
            dt=np.full(n, 0.1),
            specific_force=np.tile([0.0, 0.0, GRAVITY], (n, 1)),
            angular_rate=np.zeros((n, 3)),
        )
        means = [np.zeros(3), np.zeros(3), np.zeros(1), np.zeros(6)] * 2
        r = imu_residual(means, payload)
        self.assertEqual(len(r), 13)
        assert_allclose(r, np.zeros(13), atol=1e-12)

    def test_constant_velocity_without_samples(self):
        payload = ImuMeasurement(duration=2.0, dt=np.zeros(0), specific_force=np.zeros((0, 3)),
                                 angular_rate=np.zeros((0, 3)))
        v = np.array([1.0, 0.5, 0.0])
        means = [np.zeros(3), v, np.zeros(1), np.zeros(6),
                 2.0 * v, v, np.zeros(1), np.zeros(6)]
        assert_allclose(imu_residual(means, payload), np.zeros(13), atol=1e-12)

    def test_bias_change_penalized(self):
        payload = ImuMeasurement(duration=0.0, dt=np.zeros(0), specific_force=np.zeros((0, 3)),
                                 angular_rate=np.zeros((0, 3)))
        b1 = np.array([0.0, 0.0, 0.0, 0.0, 0.0, 0.01])
        means = [np.zeros(3), np.zeros(3), np.zeros(1), np.zeros(6),
                 np.zeros(3), np.zeros(3), np.zeros(1), b1]
        assert_allclose(imu_residual(means, payload)[7:], b1)


class TestValidation(unittest.TestCase):

    def test_registry(self):
        self.assertIs(residual_function(FactorKind.ODOMETRY), odometry_residual)
        self.assertEqual(FACTOR_ARITY[FactorKind.IMU], 8)

    def test_wrong_arity(self):
        with self.assertRaises(ValueError):
            validate_measurement(FactorKind.POSITION_FIX, 2, PositionFixMeasurement(np.zeros(3)))

    def test_wrong_payload(self):
        with self.assertRaises(TypeError):
            validate_measurement(FactorKind.PRIOR, 1, PositionFixMeasurement(np.zeros(3)))

    def test_wrong_kind(self):
        with self.assertRaises(TypeError):
            validate_measurement("prior", 1, PriorMeasurement(np.zeros(3)))


class TestNumericalJacobians(unittest.TestCase):

    def test_odometry_jacobian_against_analytic(self):
        yaw0 = 0.4
        means = [np.array([1.0, 2.0, 0.0]), np.array([yaw0]), np.array([3.0, 1.0, 0.5]), np.array([0.9])]
        measurement = OdometryMeasurement(np.array([1.0, 0.0, 0.0]), 0.2)

        r, jacobians = numerical_jacobians(odometry_residual, means, measurement)
        assert_allclose(r, odometry_residual(means, measurement))

        c, s = np.cos(yaw0), np.sin(yaw0)
        CT = np.array([[c, s, 0.0], [-s, c, 0.0], [0.0, 0.0, 1.0]])
        # d r_p / d p1 = C(ψ0)ᵀ, d r_ψ / d ψ1 = 1
        assert_allclose(jacobians[2][:3], CT, atol=1e-6)
        assert_allclose(jacobians[3][:, 0], [0.0, 0.0, 0.0, 1.0], atol=1e-6)
        assert_allclose(jacobians[0][:3], -CT, atol=1e-6)

    def test_inactive_states_skipped(self):
        means = [np.zeros(3), np.zeros(1), np.ones(3), np.zeros(1)]
        _, jacobians = numerical_jacobians(
            odometry_residual, means, OdometryMeasurement(np.zeros(3), 0.0),
            active=[False, False, True, True],
        )
        self.assertIsNone(jacobians[0])
        self.assertIsNone(jacobians[1])
        self.assertEqual(jacobians[2].shape, (4, 3))

    def test_heading_jacobian_across_wrap(self):
        """A heading residual next to π keeps a unit derivative."""
        means = [np.zeros(3), np.zeros(1), np.zeros(3), np.array([np.pi - 1e-9])]
        measurement = OdometryMeasurement(np.zeros(3), 0.0)

        _, jacobians = numerical_jacobians(
            odometry_residual, means, measurement,
            angular=angular_rows(FactorKind.ODOMETRY, measurement),
        )

        assert_allclose(jacobians[3][:, 0], [0.0, 0.0, 0.0, 1.0], atol=1e-6)
        assert_allclose(jacobians[1][:, 0], [0.0, 0.0, 0.0, -1.0], atol=1e-6)

    def test_angular_rows(self):
        self.assertEqual(angular_rows(FactorKind.PRIOR, PriorMeasurement(np.zeros(1), angular=True)), (0,))
        self.assertEqual(angular_rows(FactorKind.PRIOR, PriorMeasurement(np.zeros(3))), ())
        self.assertEqual(angular_rows(FactorKind.POSITION_FIX, PositionFixMeasurement(np.zeros(3))), ())
        self.assertEqual(angular_rows(FactorKind.ODOMETRY, OdometryMeasurement(np.zeros(3), 0.0)), (3,))


if __name__ == "__main__":
    unittest.main()
