"""
Unit tests for noise models and robust losses.

Tests cover:
    - Square-root information construction (σ, shared σ, 1/σ, covariance)
    - Whitening and cost
    - Huber and Cauchy costs and IRLS weights
"""

import unittest

import numpy as np
from numpy.testing import assert_allclose

from rsfusion.estimators import NoiseModel, RobustLoss
from rsfusion.estimators.noise_models import DEFAULT_LOSS_SCALE


class TestNoiseModelConstruction(unittest.TestCase):

    def test_from_std_devs(self):
        noise = NoiseModel.from_std_devs([0.5, 2.0])
        assert_allclose(noise.sqrt_information, np.diag([2.0, 0.5]))
        self.assertEqual(noise.dim, 2)
        self.assertTrue(noise.is_diagonal())
        assert_allclose(noise.std_devs(), [0.5, 2.0])

    def test_shared_std_dev(self):
        noise = NoiseModel.from_shared_std_dev(0.1, 3)
        assert_allclose(noise.sqrt_information, 10.0 * np.eye(3))

    def test_from_sqrt_information_diagonal(self):
        noise = NoiseModel.from_sqrt_information_diagonal([4.0, 1.0])
        assert_allclose(noise.std_devs(), [0.25, 1.0])

    def test_from_covariance(self):
        cov = np.array([[4.0, 1.0], [1.0, 2.0]])
        noise = NoiseModel.from_covariance(cov)
        S = noise.sqrt_information
        assert_allclose(S.T @ S, np.linalg.inv(cov), atol=1e-12)
        self.assertFalse(noise.is_diagonal())
        assert_allclose(noise.std_devs(), [2.0, np.sqrt(2.0)])

    def test_rejects_invalid(self):
        with self.assertRaises(ValueError):
            NoiseModel.from_std_devs([1.0, 0.0])
        with self.assertRaises(ValueError):
            NoiseModel.from_covariance(np.array([[1.0, 2.0], [2.0, 1.0]]))
        with self.assertRaises(ValueError):
            NoiseModel(np.ones((2, 3)))

    def test_read_only(self):
        noise = NoiseModel.from_std_devs([1.0])
        with self.assertRaises(ValueError):
            noise.sqrt_information[0, 0] = 5.0


class TestWhiteningAndCost(unittest.TestCase):

    def test_whiten(self):
        noise = NoiseModel.from_std_devs([0.5, 0.5, 1.0])
        assert_allclose(noise.whiten(np.ones(3)), [2.0, 2.0, 1.0])

    def test_gaussian_cost(self):
        noise = NoiseModel.from_std_devs([2.0, 2.0])
        # s² = (1 + 4) / 4
        self.assertAlmostEqual(noise.cost(np.array([2.0, 4.0])), 0.5 * 5.0)
        self.assertEqual(noise.robust_weight(np.array([100.0, 0.0])), 1.0)

    def test_with_loss_keeps_matrix(self):
        noise = NoiseModel.from_std_devs([1.0, 2.0])
        robust = noise.with_loss(RobustLoss.create("cauchy"))
        assert_allclose(robust.sqrt_information, noise.sqrt_information)
        self.assertIsNone(noise.loss)
        self.assertEqual(robust.loss.kind, "cauchy")


class TestRobustLoss(unittest.TestCase):

    def test_create(self):
        self.assertIsNone(RobustLoss.create(None))
        self.assertIsNone(RobustLoss.create("none"))
        self.assertIsNone(RobustLoss.create("L2"))
        loss = RobustLoss.create("Huber")
        self.assertEqual(loss.kind, "huber")
        self.assertEqual(loss.scale, DEFAULT_LOSS_SCALE["huber"])
        self.assertEqual(RobustLoss.create("cauchy", 3.0).scale, 3.0)

    def test_rejects_unknown(self):
        with self.assertRaises(ValueError):
            RobustLoss("tukey", 1.0)
        with self.assertRaises(ValueError):
            RobustLoss("huber", 0.0)

    def test_huber(self):
        loss = RobustLoss("huber", 1.0)
        # Quadratic inside, linear outside
        self.assertAlmostEqual(loss.rho(0.25), 0.25)
        self.assertAlmostEqual(loss.rho(9.0), 2.0 * 3.0 - 1.0)
        self.assertEqual(loss.weight(0.25), 1.0)
        self.assertAlmostEqual(loss.weight(9.0), 1.0 / 3.0)

    def test_cauchy(self):
        loss = RobustLoss("cauchy", 2.0)
        self.assertAlmostEqual(loss.rho(4.0), 4.0 * np.log(2.0))
        self.assertAlmostEqual(loss.weight(4.0), 0.5)
        # Near zero the loss is quadratic
        self.assertAlmostEqual(loss.rho(1e-6), 1e-6, places=10)

    def test_weight_is_derivative(self):
        for kind in ("huber", "cauchy"):
            loss = RobustLoss(kind, 1.5)
            for s2 in (0.5, 4.0, 50.0):
                h = 1e-6
                numeric = (loss.rho(s2 + h) - loss.rho(s2 - h)) / (2 * h)
                self.assertAlmostEqual(loss.weight(s2), numeric, places=5)

    def test_robust_cost_below_gaussian(self):
        r = np.array([10.0, 0.0, 0.0])
        gaussian = NoiseModel.from_std_devs([1.0] * 3)
        for kind in ("huber", "cauchy"):
            robust = gaussian.with_loss(RobustLoss.create(kind))
            self.assertLess(robust.cost(r), gaussian.cost(r))
            self.assertLess(robust.robust_weight(r), 1.0)


if __name__ == "__main__":
    unittest.main()
