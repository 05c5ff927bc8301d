"""
Static network and profile data used by every charging mode.

The records in this module are created once per run and are read-only
afterwards: the numpy arrays they hold are flagged non-writeable so that
no model builder can alter the shared matrices.
"""
from dataclasses import dataclass

import numpy as np

from smartcharge.errors import ConfigurationError

SLACK_BUS = 1


def _read_only(array) -> np.ndarray:
    array = np.array(array, dtype=float, copy=True)
    array.setflags(write=False)
    return array


def kw_to_pu(values, Spu: float) -> np.ndarray:
    """Convert power values in kW to per unit on the apparent power base ``Spu`` [VA]."""
    return np.asarray(values, dtype=float) * 1000.0 / Spu


@dataclass(frozen=True)
class TimeHorizon:
    """
    Discrete optimization horizon.

    SOC quantities live on the ``T`` period boundaries ``1..T``; power
    quantities live on the ``T - 1`` intervals between them.
    """
    T: int
    dt: float = 1.0

    def __post_init__(self):
        if int(self.T) != self.T or self.T < 2:
            raise ConfigurationError(f"Horizon must have at least 2 periods, got T={self.T}")
        if self.dt <= 0:
            raise ConfigurationError(f"Period length must be positive, got dt={self.dt}")


@dataclass(frozen=True, eq=False)
class NetworkData:
    """
    Per-unit bus admittance data of a radial feeder.

    Attributes
    ----------
    G : numpy.ndarray
        Conductance matrix (nbus x nbus) in per unit.
    B : numpy.ndarray
        Susceptance matrix (nbus x nbus) in per unit.
    Gen : float
        Slack-bus (bus 1) voltage magnitude in per unit.
    Vpu : float
        Voltage base [V].
    Spu : float
        Apparent power base [VA].
    """
    G: np.ndarray
    B: np.ndarray
    Gen: float
    Vpu: float
    Spu: float

    def __post_init__(self):
        G = _read_only(self.G)
        B = _read_only(self.B)
        if G.ndim != 2 or G.shape[0] != G.shape[1]:
            raise ConfigurationError(f"Conductance matrix must be square, got shape {G.shape}")
        if B.shape != G.shape:
            raise ConfigurationError(f"Susceptance shape {B.shape} does not match conductance shape {G.shape}")
        if self.Spu <= 0 or self.Vpu <= 0:
            raise ConfigurationError("Base quantities Vpu and Spu must be positive")
        object.__setattr__(self, 'G', G)
        object.__setattr__(self, 'B', B)

    @property
    def nbus(self) -> int:
        return self.G.shape[0]

    @property
    def slack_bus(self) -> int:
        return SLACK_BUS

    @classmethod
    def from_admittance(cls, Ybus, Vpu: float, Spu: float, V_source: float, nbus: int | None = None):
        """
        Build per-unit network data from a raw complex admittance matrix.

        Parameters
        ----------
        Ybus : array_like of complex
            Bus admittance matrix in siemens.
        Vpu : float
            Nominal bus voltage used as voltage base [V].
        Spu : float
            Apparent power base [VA].
        V_source : float
            Actual source voltage at the slack bus [V].
        nbus : int, optional
            Declared number of buses. A mismatch with the matrix size raises
            :class:`ConfigurationError`.

        Returns
        -------
        NetworkData
            ``G = real(Ybus) / Ypu``, ``B = imag(Ybus) / Ypu`` with
            ``Ypu = Spu / Vpu**2`` and ``Gen = V_source / Vpu``.
        """
        Ybus = np.asarray(Ybus, dtype=complex)
        if nbus is not None and Ybus.shape != (nbus, nbus):
            raise ConfigurationError(f"Admittance matrix has shape {Ybus.shape}, expected ({nbus}, {nbus})")
        if Vpu <= 0 or Spu <= 0:
            raise ConfigurationError("Base quantities Vpu and Spu must be positive")
        Ypu = Spu / Vpu ** 2
        return cls(G=Ybus.real / Ypu, B=Ybus.imag / Ypu, Gen=V_source / Vpu, Vpu=Vpu, Spu=Spu)


@dataclass(frozen=True, eq=False)
class ProfileData:
    """
    Baseline per-unit load and solar injection matrices, each ``nbus x T``.
    """
    base_load: np.ndarray
    base_qload: np.ndarray
    solar: np.ndarray

    def __post_init__(self):
        for name in ('base_load', 'base_qload', 'solar'):
            matrix = _read_only(getattr(self, name))
            if matrix.ndim != 2:
                raise ConfigurationError(f"{name} must be a 2-D matrix, got {matrix.ndim} dimensions")
            object.__setattr__(self, name, matrix)
        shapes = {self.base_load.shape, self.base_qload.shape, self.solar.shape}
        if len(shapes) != 1:
            raise ConfigurationError(f"Profile matrices disagree in shape: {sorted(shapes)}")

    @property
    def shape(self):
        return self.base_load.shape

    @classmethod
    def from_kw(cls, pload_kw, qload_kw, pv_kw, Spu: float):
        """Scale kW/kvar profile matrices to per unit."""
        return cls(base_load=kw_to_pu(pload_kw, Spu),
                   base_qload=kw_to_pu(qload_kw, Spu),
                   solar=kw_to_pu(pv_kw, Spu))

    def check_dimensions(self, nbus: int, T: int):
        """Raise :class:`ConfigurationError` unless every matrix is ``nbus x T``."""
        if self.shape != (nbus, T):
            raise ConfigurationError(f"Profile matrices have shape {self.shape}, expected ({nbus}, {T})")
