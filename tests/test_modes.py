import pytest

from smartcharge.errors import ConfigurationError
from smartcharge.modes import ChargingMode


def test_mode_features():
    assert not ChargingMode.UNCOORDINATED.features.coordinated
    assert not ChargingMode.UNCOORDINATED.features.voltage_band
    for mode in (ChargingMode.SMART, ChargingMode.SMART_REACTIVE, ChargingMode.V2G, ChargingMode.V2G_REACTIVE):
        assert mode.features.coordinated
        assert mode.features.voltage_band
    assert ChargingMode.SMART_REACTIVE.features.reactive_support
    assert not ChargingMode.SMART_REACTIVE.features.v2g_support
    assert ChargingMode.V2G.features.v2g_support
    assert not ChargingMode.V2G.features.reactive_support
    assert ChargingMode.V2G_REACTIVE.features.v2g_support
    assert ChargingMode.V2G_REACTIVE.features.reactive_support


def test_from_code():
    assert ChargingMode.from_code(3) is ChargingMode.SMART_REACTIVE
    assert ChargingMode.from_code('5') is ChargingMode.V2G_REACTIVE


@pytest.mark.parametrize('code', [0, 6, -1, 'x', None])
def test_invalid_mode_code(code):
    with pytest.raises(ConfigurationError):
        ChargingMode.from_code(code)


def test_every_mode_has_a_description():
    assert all(mode.description for mode in ChargingMode)
