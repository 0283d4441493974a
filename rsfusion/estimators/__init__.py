"""
Factor-graph estimation engine.

Available components:
    - NoiseModel / RobustLoss: square-root information with Huber or Cauchy loss
    - FactorKind and the residual payloads of each kind
    - FactorGraph: keyed state store, append-only factors, windowed freezing
      and a Levenberg-Marquardt solve over the free states
"""

from rsfusion.estimators.factor_graph import (
    DuplicateStateError,
    Factor,
    FactorGraph,
    FactorGraphError,
    IterationSummary,
    SolveSettings,
    StateKey,
    StateType,
    StateVariable,
    UnknownStateError,
)
from rsfusion.estimators.factors import (
    FactorKind,
    ImuMeasurement,
    OdometryMeasurement,
    PositionFixMeasurement,
    PriorMeasurement,
)
from rsfusion.estimators.noise_models import NoiseModel, RobustLoss

__all__ = [
    # Noise models
    "NoiseModel",
    "RobustLoss",
    # Factor kinds
    "FactorKind",
    "PriorMeasurement",
    "PositionFixMeasurement",
    "OdometryMeasurement",
    "ImuMeasurement",
    # Graph
    "FactorGraph",
    "Factor",
    "StateKey",
    "StateType",
    "StateVariable",
    "SolveSettings",
    "IterationSummary",
    # Errors
    "FactorGraphError",
    "DuplicateStateError",
    "UnknownStateError",
]
