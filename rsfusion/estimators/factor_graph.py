"""
Incremental factor graph for sliding-window state estimation.

The graph owns every state variable of a run in a keyed store and every
factor in an append-only list. Factors reference states by StateKey only, so
there are no links between objects and nothing is ever removed. Retired
states are frozen in place by set_all_constant_outside_window: they keep
anchoring the factors that reference them but are no longer adjusted. This
bounds the size of each solve; it is an approximation of marginalization,
not an exact elimination.

Solving follows the Levenberg-Marquardt scheme:
    - (JᵀWJ + μI) d = -JᵀWr over the free states only
    - gain ratio g = (F(x) - F(x + d)) / (L(0) - L(d)) to accept or reject d
    - μ ← μ·max(1/3, 1 - (2g - 1)³) on success, μ ← μ·ν, ν ← 2ν on failure
    - converged when the step with the initial μ is below the tolerance

Robust noise models enter through iteratively reweighted least squares: each
factor block is scaled by the weight ρ'(s²) of its current whitened residual.
"""

import time
from collections import Counter, namedtuple
from dataclasses import asdict, dataclass
from enum import Enum
from typing import Dict, Iterable, List, Optional, Sequence, Tuple

import numpy as np
from scipy import stats

from rsfusion.estimators.factors import (
    FactorKind,
    angular_rows,
    numerical_jacobians,
    residual_function,
    validate_measurement,
)
from rsfusion.estimators.noise_models import NoiseModel
from rsfusion.utils.angles import wrap_angle_array


class FactorGraphError(Exception):
    """Base class for graph contract violations."""


class DuplicateStateError(FactorGraphError, KeyError):
    """Raised when a state is added under a key that already exists."""


class UnknownStateError(FactorGraphError, KeyError):
    """Raised when a state key does not exist in the graph."""


class StateType(Enum):
    """Semantic state types with their fixed dimension."""

    POINT3 = ("point3", 3)
    VELOCITY3 = ("velocity3", 3)
    ANGLE = ("angle", 1)
    IMU_BIAS = ("imu_bias", 6)

    def __init__(self, label: str, dim: int):
        self.label = label
        self.dim = dim

    @property
    def is_angular(self) -> bool:
        return self is StateType.ANGLE


StateKey = namedtuple("StateKey", ["name", "timestamp", "index"], defaults=(0,))
StateKey.__doc__ = "Unique key of a state variable: (name, timestamp, index)."


class StateVariable:
    """
    A state variable of the graph.

    Only the mean and the free -> frozen transition ever change after
    creation. Angle states are kept wrapped to [-π, π].

    Attributes:
        key: StateKey of the variable.
        state_type: StateType, fixing the dimension.
        mean: Current estimate (dim,).
    """

    def __init__(self, key: StateKey, state_type: StateType, mean: np.ndarray):
        self.key = key
        self.state_type = state_type
        self.mean = mean
        self._constant = False

    @property
    def dim(self) -> int:
        return self.state_type.dim

    @property
    def is_constant(self) -> bool:
        return self._constant

    def set_constant(self) -> None:
        """Freeze the variable. There is no way back."""
        self._constant = True

    def __repr__(self) -> str:
        flag = "frozen" if self._constant else "free"
        return f"StateVariable({self.key}, {self.state_type.label}, {flag}, mean={self.mean})"


class Factor:
    """
    A residual block connecting one or more states.

    Attributes:
        kind: FactorKind selecting the residual function.
        keys: Connected state keys, in the order the residual expects.
        measurement: Kind-specific payload.
        noise_model: NoiseModel whitening (and optionally robustifying) the
            residual.
    """

    def __init__(
        self,
        kind: FactorKind,
        keys: Sequence[StateKey],
        measurement,
        noise_model: NoiseModel,
    ):
        self.kind = kind
        self.keys = tuple(keys)
        self.measurement = measurement
        self.noise_model = noise_model
        self.residual_func = residual_function(kind)
        self.angular_rows = angular_rows(kind, measurement)

    def residual(self, means: Sequence[np.ndarray]) -> np.ndarray:
        return self.residual_func(means, self.measurement)

    def cost(self, means: Sequence[np.ndarray]) -> float:
        return self.noise_model.cost(self.residual(means))


@dataclass(frozen=True)
class SolveSettings:
    """
    Solver limits for one call to FactorGraph.solve.

    Attributes:
        max_iterations: Maximum number of LM iterations.
        tolerance: Convergence threshold on the norm of the step a fresh
            solve would take from the current means.
        initial_mu: Initial LM damping μ.
        confidence: Quantile of the chi-square consistency check.
    """

    max_iterations: int = 10
    tolerance: float = 1e-6
    initial_mu: float = 1e-3
    confidence: float = 0.95

    def __post_init__(self) -> None:
        if self.max_iterations < 1:
            raise ValueError(f"max_iterations must be >= 1, got {self.max_iterations}")
        if self.tolerance <= 0:
            raise ValueError(f"tolerance must be positive, got {self.tolerance}")
        if self.initial_mu <= 0:
            raise ValueError(f"initial_mu must be positive, got {self.initial_mu}")
        if not 0.0 < self.confidence < 1.0:
            raise ValueError(f"confidence must be in (0, 1), got {self.confidence}")


@dataclass
class IterationSummary:
    """
    Per-timestep record of one solve.

    The solver fills in the statistics and the solve duration. The
    estimation loop adds the timestamp, the predict/measure/total durations
    and the forced flag. Purely observational.
    """

    timestamp: float = float("nan")
    predict_duration: float = 0.0
    measure_duration: float = 0.0
    solve_duration: float = 0.0
    total_duration: float = 0.0
    iterations: int = 0
    initial_cost: float = 0.0
    final_cost: float = 0.0
    converged: bool = True
    forced: bool = False
    num_free_states: int = 0
    num_active_factors: int = 0
    num_factors: int = 0
    dof: int = 0
    chi2_threshold: float = float("nan")
    consistent: bool = True

    def as_dict(self) -> dict:
        return asdict(self)


def _damped_step(H: np.ndarray, b: np.ndarray, mu: float) -> np.ndarray:
    """Solve (H + μI) d = b, falling back to least squares if singular."""
    H_damped = H + mu * np.eye(len(b))
    try:
        return np.linalg.solve(H_damped, b)
    except np.linalg.LinAlgError:
        return np.linalg.lstsq(H_damped, b, rcond=None)[0]


def _is_fixed_point(H: np.ndarray, b: np.ndarray, settings: SolveSettings) -> bool:
    # The first step a fresh solve would take from here
    return bool(np.linalg.norm(_damped_step(H, b, settings.initial_mu)) < settings.tolerance)

class FactorGraph:
    """
    Keyed state store plus append-only factor list with windowed freezing.

    Attributes:
        last_summary: IterationSummary of the most recent solve, or None.

    Example:
        >>> graph = FactorGraph()
        >>> key = graph.add_state("position", StateType.POINT3, 0.0)
        >>> graph.add_factor(FactorKind.POSITION_FIX, [key],
        ...                  PositionFixMeasurement(np.array([1.0, 2.0, 3.0])),
        ...                  NoiseModel.from_std_devs([1.0, 1.0, 1.0]))
        0
        >>> summary = graph.solve()
        >>> graph.get_mean("position", 0.0)
        array([1., 2., 3.])
    """

    def __init__(self):
        self._states: Dict[StateKey, StateVariable] = {}
        self._factors: List[Factor] = []
        self._adjacency: Dict[StateKey, List[int]] = {}
        # Insertion-ordered set of free keys
        self._free: Dict[StateKey, None] = {}
        self.last_summary: Optional[IterationSummary] = None

    # ------------------------------------------------------------------
    # States
    # ------------------------------------------------------------------

    def add_state(
        self,
        name: str,
        state_type: StateType,
        timestamp: float,
        index: int = 0,
        mean: Optional[np.ndarray] = None,
    ) -> StateKey:
        """
        Add a free state variable.

        Args:
            name: State name, e.g. 'position'.
            state_type: StateType of the variable.
            timestamp: Time of the state. Units: s.
            index: Instance index for several states of one name and time.
            mean: Initial estimate; zeros of the type's dimension if None.

        Returns:
            The new StateKey.

        Raises:
            DuplicateStateError: If the key already exists.
            ValueError: If the mean has the wrong size or is not finite.
        """
        key = StateKey(name, float(timestamp), int(index))
        if key in self._states:
            raise DuplicateStateError(f"State {key} already exists")

        if mean is None:
            value = np.zeros(state_type.dim)
        else:
            value = np.array(mean, dtype=float).reshape(-1)
            if value.shape != (state_type.dim,):
                raise ValueError(
                    f"{state_type.label} state needs {state_type.dim} values, got {value.shape}"
                )
            if not np.all(np.isfinite(value)):
                raise ValueError(f"State mean must be finite, got {value}")
        if state_type.is_angular:
            value = wrap_angle_array(value)

        self._states[key] = StateVariable(key, state_type, value)
        self._adjacency[key] = []
        self._free[key] = None
        return key

    def has_state(self, name: str, timestamp: float, index: int = 0) -> bool:
        return StateKey(name, float(timestamp), int(index)) in self._states

    def get_state(self, name: str, timestamp: float, index: int = 0) -> StateVariable:
        """Look up a state; raises UnknownStateError if absent."""
        return self.get_state_by_key(StateKey(name, float(timestamp), int(index)))

    def get_state_by_key(self, key: StateKey) -> StateVariable:
        try:
            return self._states[key]
        except KeyError:
            raise UnknownStateError(f"State {key} does not exist") from None

    def get_mean(self, name: str, timestamp: float, index: int = 0) -> np.ndarray:
        """Copy of a state's current mean."""
        return self.get_state(name, timestamp, index).mean.copy()

    def state_timestamps(self, name: str) -> List[float]:
        """Sorted timestamps of all states with a given name."""
        return sorted({key.timestamp for key in self._states if key.name == name})

    def state_names(self) -> List[str]:
        return sorted({key.name for key in self._states})

    # ------------------------------------------------------------------
    # Factors
    # ------------------------------------------------------------------

    def add_factor(
        self,
        kind: FactorKind,
        keys: Sequence[StateKey],
        measurement,
        noise_model: NoiseModel,
    ) -> int:
        """
        Append a factor connecting existing states.

        All checks run before anything is stored, so a failed call leaves the
        graph unchanged.

        Args:
            kind: FactorKind of the factor.
            keys: Keys of the connected states in residual order.
            measurement: Payload matching the kind.
            noise_model: NoiseModel with the residual's dimension.

        Returns:
            Index of the new factor.

        Raises:
            UnknownStateError: If any key does not exist.
            TypeError: If the payload type does not match the kind.
            ValueError: If the arity or the noise dimension is wrong.
        """
        keys = [StateKey(*key) for key in keys]
        validate_measurement(kind, len(keys), measurement)

        missing = [key for key in keys if key not in self._states]
        if missing:
            raise UnknownStateError(f"{kind.name} factor references unknown states {missing}")

        factor = Factor(kind, keys, measurement, noise_model)
        residual = factor.residual([self._states[key].mean for key in keys])
        if len(residual) != noise_model.dim:
            raise ValueError(
                f"{kind.name} residual has dimension {len(residual)}, "
                f"noise model has {noise_model.dim}"
            )

        factor_id = len(self._factors)
        self._factors.append(factor)
        for key in set(keys):
            self._adjacency[key].append(factor_id)
        return factor_id

    def factors_of(self, key: StateKey) -> List[Factor]:
        """Factors that reference a state."""
        if key not in self._adjacency:
            raise UnknownStateError(f"State {key} does not exist")
        return [self._factors[i] for i in self._adjacency[key]]

    # ------------------------------------------------------------------
    # Freezing
    # ------------------------------------------------------------------

    def set_constant(self, key: StateKey) -> None:
        """Freeze a single state (one-way)."""
        state = self.get_state_by_key(StateKey(*key))
        state.set_constant()
        self._free.pop(state.key, None)

    def set_all_constant_outside_window(self, window_length: float, current_time: float) -> int:
        """
        Freeze every free state older than the window.

        A state is frozen when timestamp < current_time - window_length.
        Frozen states are never freed again.

        Returns:
            Number of states frozen by this call.
        """
        horizon = current_time - window_length
        retired = [key for key in self._free if key.timestamp < horizon]
        for key in retired:
            self._states[key].set_constant()
            del self._free[key]
        return len(retired)

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    @property
    def num_states(self) -> int:
        return len(self._states)

    @property
    def num_factors(self) -> int:
        return len(self._factors)

    @property
    def num_free_states(self) -> int:
        return len(self._free)

    def free_keys(self) -> List[StateKey]:
        return list(self._free)

    def factors(self, kind: Optional[FactorKind] = None) -> List[Factor]:
        if kind is None:
            return list(self._factors)
        return [f for f in self._factors if f.kind is kind]

    def compute_cost(self) -> float:
        """Total robust cost ½ Σ ρ(‖S r‖²) over all factors."""
        return self._cost_of(range(len(self._factors)))

    def _cost_of(self, factor_ids: Iterable[int]) -> float:
        total = 0.0
        for fid in factor_ids:
            factor = self._factors[fid]
            total += factor.cost([self._states[key].mean for key in factor.keys])
        return total

    def _active_factor_ids(self) -> List[int]:
        """Factors adjacent to at least one free state."""
        ids = set()
        for key in self._free:
            ids.update(self._adjacency[key])
        return sorted(ids)

    # ------------------------------------------------------------------
    # Solving
    # ------------------------------------------------------------------

    def solve(self, settings: Optional[SolveSettings] = None) -> IterationSummary:
        """
        Optimize the free states with Levenberg-Marquardt.

        Factors that only touch frozen states add a constant to the cost and
        are skipped. Frozen means are never modified. Running out of
        iterations is reported through converged=False, not raised.

        The solve has converged once the first step of a new solve, taken
        with the initial damping, is shorter than the tolerance. Solving
        again without changing the graph then leaves the means untouched.

        Args:
            settings: SolveSettings; defaults if None.

        Returns:
            IterationSummary with the solver statistics.
        """
        if settings is None:
            settings = SolveSettings()

        start = time.perf_counter()
        order = list(self._free)
        offsets: Dict[StateKey, slice] = {}
        total_dim = 0
        for key in order:
            dim = self._states[key].dim
            offsets[key] = slice(total_dim, total_dim + dim)
            total_dim += dim

        active = self._active_factor_ids()
        cost = self._cost_of(active)
        summary = IterationSummary(
            initial_cost=cost,
            final_cost=cost,
            num_free_states=len(order),
            num_active_factors=len(active),
            num_factors=len(self._factors),
        )

        if total_dim == 0 or not active:
            summary.solve_duration = time.perf_counter() - start
            self.last_summary = summary
            return summary

        mu = settings.initial_mu
        nu = 2.0
        iterations = 0

        H, b = self._build_linearized_system(offsets, total_dim, active)
        converged = _is_fixed_point(H, b, settings)

        while not converged and iterations < settings.max_iterations:
            iterations += 1
            d_lm = _damped_step(H, b, mu)

            old_means = {key: self._states[key].mean.copy() for key in order}
            self._update_variables(offsets, d_lm)
            new_cost = self._cost_of(active)

            actual_reduction = cost - new_cost
            predicted_reduction = 0.5 * np.dot(d_lm, mu * d_lm + b)
            g = actual_reduction / predicted_reduction if predicted_reduction > 0 else 0.0

            if g > 0:
                mu = mu * max(1.0 / 3.0, 1.0 - (2.0 * g - 1.0) ** 3)
                nu = 2.0
                cost = new_cost
                H, b = self._build_linearized_system(offsets, total_dim, active)
                converged = _is_fixed_point(H, b, settings)
            else:
                for key, mean in old_means.items():
                    self._states[key].mean = mean
                mu = mu * nu
                nu = 2.0 * nu

        summary.iterations = iterations
        summary.final_cost = cost
        summary.converged = converged

        dof = sum(self._factors[fid].noise_model.dim for fid in active) - total_dim
        summary.dof = dof
        if dof > 0:
            summary.chi2_threshold = float(stats.chi2.ppf(settings.confidence, dof))
            summary.consistent = bool(2.0 * cost <= summary.chi2_threshold)

        summary.solve_duration = time.perf_counter() - start
        self.last_summary = summary
        return summary

    def _build_linearized_system(
        self,
        offsets: Dict[StateKey, slice],
        total_dim: int,
        factor_ids: Sequence[int],
    ) -> Tuple[np.ndarray, np.ndarray]:
        """
        Build H = Σ w JᵀJ and b = -Σ w Jᵀe over the active factors.

        J and e are whitened by each factor's square-root information and
        w is its robust weight at the current estimate.
        """
        H = np.zeros((total_dim, total_dim))
        b = np.zeros(total_dim)

        for fid in factor_ids:
            factor = self._factors[fid]
            means = [self._states[key].mean for key in factor.keys]
            mask = [key in offsets for key in factor.keys]
            r, jacobians = numerical_jacobians(
                factor.residual_func, means, factor.measurement, mask, factor.angular_rows
            )

            S = factor.noise_model.sqrt_information
            w = factor.noise_model.robust_weight(r)
            e = S @ r

            blocks = [
                (offsets[key], S @ J)
                for key, J in zip(factor.keys, jacobians)
                if J is not None
            ]
            for slice_i, J_i in blocks:
                b[slice_i] -= w * J_i.T @ e
                for slice_j, J_j in blocks:
                    H[slice_i, slice_j] += w * J_i.T @ J_j

        return H, b

    def _update_variables(self, offsets: Dict[StateKey, slice], delta_x: np.ndarray) -> None:
        for key, block in offsets.items():
            state = self._states[key]
            mean = state.mean + delta_x[block]
            if state.state_type.is_angular:
                mean = wrap_angle_array(mean)
            state.mean = mean

    # ------------------------------------------------------------------
    # Reporting
    # ------------------------------------------------------------------

    def report(self) -> str:
        """Read-only text summary of the graph and the last solve."""
        lines = ["Factor graph report", "-" * 40]

        by_name = Counter(key.name for key in self._states)
        free_by_name = Counter(key.name for key in self._free)
        lines.append(f"States: {self.num_states} ({self.num_free_states} free)")
        for name in sorted(by_name):
            state_type = next(
                s.state_type for k, s in self._states.items() if k.name == name
            )
            lines.append(
                f"  {name:<14s} {state_type.label:<10s} "
                f"{by_name[name]:6d} total {free_by_name[name]:6d} free"
            )

        by_kind = Counter(f.kind.name for f in self._factors)
        lines.append(f"Factors: {self.num_factors}")
        for kind in sorted(by_kind):
            lines.append(f"  {kind:<14s} {by_kind[kind]:6d}")

        if self.last_summary is not None:
            s = self.last_summary
            lines.append("Last solve:")
            lines.append(f"  iterations     {s.iterations}")
            lines.append(f"  cost           {s.initial_cost:.6g} -> {s.final_cost:.6g}")
            lines.append(f"  converged      {s.converged}")
            lines.append(f"  duration       {s.solve_duration * 1e3:.2f} ms")
            if s.dof > 0:
                lines.append(
                    f"  chi2 check     2F = {2.0 * s.final_cost:.3f} "
                    f"vs {s.chi2_threshold:.3f} (dof {s.dof})"
                )
        return "\n".join(lines)

    def print_report(self) -> None:
        print(self.report())
