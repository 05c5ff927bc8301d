"""
Electric vehicle fleet model.

Each :class:`ElectricVehicle` is immutable and is consumed by exactly one
model build. :class:`EVFleet` groups the vehicles and provides the bus-level
aggregation shared by the optimization models (decision variables) and by
the uncoordinated power flow (fixed schedules).
"""
import math
from dataclasses import dataclass

import numpy as np

from smartcharge.errors import ConfigurationError


@dataclass(frozen=True)
class ElectricVehicle:
    """
    Static attributes of one EV.

    Attributes
    ----------
    id : int
        Ordinal identifier (1-based).
    capacity : float
        Battery capacity ``E`` [kWh].
    rated_power : float
        Rated charger power ``S_ev`` [kW].
    efficiency : float
        Charging efficiency ``eta`` in (0, 1].
    arrival : int
        First period of the connection window.
    departure : int
        Period at which the EV leaves; it is connected on ``[arrival, departure)``.
    soc_initial : float
        State of charge at period 1.
    soc_target : float
        Desired state of charge.
    bus : int
        Host bus index (1-based).
    """
    id: int
    capacity: float
    rated_power: float
    efficiency: float
    arrival: int
    departure: int
    soc_initial: float
    soc_target: float
    bus: int

    def __post_init__(self):
        if self.capacity <= 0:
            raise ConfigurationError(f"EV {self.id}: capacity must be positive, got {self.capacity}")
        if self.rated_power <= 0:
            raise ConfigurationError(f"EV {self.id}: rated power must be positive, got {self.rated_power}")
        if not 0 < self.efficiency <= 1:
            raise ConfigurationError(f"EV {self.id}: efficiency must be in (0, 1], got {self.efficiency}")
        if self.arrival > self.departure:
            raise ConfigurationError(
                f"EV {self.id}: arrival period {self.arrival} is after departure period {self.departure}")
        if self.arrival < 1:
            raise ConfigurationError(f"EV {self.id}: arrival period must be >= 1, got {self.arrival}")
        for name in ('soc_initial', 'soc_target'):
            soc = getattr(self, name)
            if not 0 <= soc <= 1:
                raise ConfigurationError(f"EV {self.id}: {name} must be in [0, 1], got {soc}")
        if self.bus < 1:
            raise ConfigurationError(f"EV {self.id}: bus index must be >= 1, got {self.bus}")

    def is_connected(self, t: int) -> bool:
        """True if the EV can charge or discharge during interval ``t``."""
        return self.arrival <= t < self.departure

    def apparent_power(self, factor: float = 1.1) -> float:
        """Converter apparent power rating ``S_app = factor * S_ev``."""
        return factor * self.rated_power

    def max_reactive_power(self, factor: float = 1.1) -> float:
        """Reactive limit ``sqrt(S_app**2 - S_ev**2)``."""
        return math.sqrt(self.apparent_power(factor) ** 2 - self.rated_power ** 2)


def _per_ev(value, n: int, name: str) -> list:
    # scalars apply to the whole fleet
    if np.isscalar(value):
        return [value] * n
    values = list(value)
    if len(values) != n:
        raise ConfigurationError(f"Expected {n} values for '{name}', got {len(values)}")
    return values


class EVFleet:
    """
    Ordered, read-only collection of EVs.

    Parameters
    ----------
    evs : iterable of ElectricVehicle
        Vehicles in the fleet. Identifiers must be unique.
    """

    def __init__(self, evs):
        self._evs = tuple(evs)
        ids = [ev.id for ev in self._evs]
        if len(set(ids)) != len(ids):
            raise ConfigurationError(f"Duplicate EV identifiers: {ids}")
        self._by_id = {ev.id: ev for ev in self._evs}

    @classmethod
    def from_parameters(cls, n, eta, E, S_ev, SOC_initial, SOC_target, arrival_time, departure_time, ev_bus):
        """
        Build a fleet from scalar-or-vector parameters.

        Scalar values are applied to every EV; sequences must contain exactly
        ``n`` entries.
        """
        n = int(n)
        if n < 0:
            raise ConfigurationError(f"Number of EVs must be non-negative, got {n}")
        columns = {
            'capacity': _per_ev(E, n, 'E'),
            'rated_power': _per_ev(S_ev, n, 'S_ev'),
            'efficiency': _per_ev(eta, n, 'eta'),
            'arrival': _per_ev(arrival_time, n, 'arrival_time'),
            'departure': _per_ev(departure_time, n, 'departure_time'),
            'soc_initial': _per_ev(SOC_initial, n, 'SOC_initial'),
            'soc_target': _per_ev(SOC_target, n, 'SOC_target'),
            'bus': _per_ev(ev_bus, n, 'ev_bus'),
        }
        evs = []
        for k in range(n):
            evs.append(ElectricVehicle(
                id=k + 1,
                capacity=float(columns['capacity'][k]),
                rated_power=float(columns['rated_power'][k]),
                efficiency=float(columns['efficiency'][k]),
                arrival=int(columns['arrival'][k]),
                departure=int(columns['departure'][k]),
                soc_initial=float(columns['soc_initial'][k]),
                soc_target=float(columns['soc_target'][k]),
                bus=int(columns['bus'][k]),
            ))
        return cls(evs)

    def __iter__(self):
        return iter(self._evs)

    def __len__(self):
        return len(self._evs)

    def __getitem__(self, ev_id):
        return self._by_id[ev_id]

    @property
    def ids(self) -> list:
        return [ev.id for ev in self._evs]

    def at_bus(self, bus: int) -> list:
        """EVs hosted at ``bus``."""
        return [ev for ev in self._evs if ev.bus == bus]

    def validate(self, nbus: int, T: int):
        """
        Check the fleet against the network size and horizon.

        Raises
        ------
        ConfigurationError
            If a host bus exceeds ``nbus`` or a departure period exceeds ``T``.
        """
        for ev in self._evs:
            if ev.bus > nbus:
                raise ConfigurationError(f"EV {ev.id}: bus {ev.bus} exceeds number of buses {nbus}")
            if ev.departure > T:
                raise ConfigurationError(f"EV {ev.id}: departure period {ev.departure} exceeds horizon T={T}")

    def bus_injection(self, bus: int, t: int, power, T: int, Spu: float):
        """
        Aggregate EV power at ``bus`` during period ``t`` in per unit.

        Parameters
        ----------
        bus : int
            Bus index.
        t : int
            Period index. The terminal period ``T`` carries no decision and
            yields exactly zero.
        power : callable
            ``power(ev_id, t)`` returning the EV's net power in kW (a number or
            a Pyomo expression).
        T : int
            Horizon length.
        Spu : float
            Apparent power base [VA].
        """
        if t >= T:
            return 0.0
        return (1000.0 / Spu) * sum(power(ev.id, t) for ev in self.at_bus(bus))

    def aggregate_schedule(self, schedule, nbus: int, T: int, Spu: float) -> np.ndarray:
        """
        Aggregate a fixed per-EV schedule into an ``nbus x T`` per-unit matrix.

        ``schedule`` is indexed ``schedule[ev_id][t]`` (e.g. a DataFrame with
        intervals as rows and EV ids as columns).
        """
        injection = np.zeros((nbus, T))
        for i in range(1, nbus + 1):
            for t in range(1, T + 1):
                injection[i - 1, t - 1] = self.bus_injection(
                    i, t, lambda ev_id, tt: float(schedule[ev_id][tt]), T, Spu)
        return injection
