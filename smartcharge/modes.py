"""
Charging policies and the model features each of them switches on.
"""
from dataclasses import dataclass
from enum import IntEnum

from smartcharge.errors import ConfigurationError


@dataclass(frozen=True)
class ModeFeatures:
    """
    Feature flags selecting the variables and constraints of a charging mode.

    Attributes
    ----------
    coordinated : bool
        EV schedules and network are optimized jointly. If False, EVs are
        scheduled one by one and the result is fed to a separate power flow.
    reactive_support : bool
        EVs provide reactive power within their apparent-power circle.
    v2g_support : bool
        EVs may discharge into the network.
    voltage_band : bool
        Bus voltage magnitudes are kept within the voltage band.
    """
    coordinated: bool
    reactive_support: bool
    v2g_support: bool
    voltage_band: bool


class ChargingMode(IntEnum):
    UNCOORDINATED = 1
    SMART = 2
    SMART_REACTIVE = 3
    V2G = 4
    V2G_REACTIVE = 5

    @classmethod
    def from_code(cls, code):
        """Return the mode for integer ``code`` in 1-5, else raise :class:`ConfigurationError`."""
        try:
            return cls(int(code))
        except (TypeError, ValueError):
            raise ConfigurationError(f"Mode must be 1, 2, 3, 4, or 5, got {code!r}") from None

    @property
    def features(self) -> ModeFeatures:
        return MODE_FEATURES[self]

    @property
    def description(self) -> str:
        return MODE_DESCRIPTIONS[self]


MODE_FEATURES = {
    ChargingMode.UNCOORDINATED: ModeFeatures(coordinated=False, reactive_support=False,
                                             v2g_support=False, voltage_band=False),
    ChargingMode.SMART: ModeFeatures(coordinated=True, reactive_support=False,
                                     v2g_support=False, voltage_band=True),
    ChargingMode.SMART_REACTIVE: ModeFeatures(coordinated=True, reactive_support=True,
                                              v2g_support=False, voltage_band=True),
    ChargingMode.V2G: ModeFeatures(coordinated=True, reactive_support=False,
                                   v2g_support=True, voltage_band=True),
    ChargingMode.V2G_REACTIVE: ModeFeatures(coordinated=True, reactive_support=True,
                                            v2g_support=True, voltage_band=True),
}

MODE_DESCRIPTIONS = {
    ChargingMode.UNCOORDINATED: 'Uncoordinated charging (no voltage constraints in scheduling)',
    ChargingMode.SMART: 'Smart charging (active power only)',
    ChargingMode.SMART_REACTIVE: 'Smart + Reactive power',
    ChargingMode.V2G: 'Smart V2G (active discharge; no reactive)',
    ChargingMode.V2G_REACTIVE: 'Smart V2G + Reactive power',
}
