import numpy as np
import pytest

from smartcharge.ev_fleet import ElectricVehicle, EVFleet
from smartcharge.modes import ChargingMode
from smartcharge.network import TimeHorizon
from smartcharge.optimization import run_charging_mode
from smartcharge.problem_builder import ProblemSettings, build_scheduling_model
from smartcharge.results import schedule_tables
from smartcharge.solver import SolverAdapter

pytestmark = pytest.mark.ipopt

TOL = 1e-5


@pytest.fixture
def adapter():
    return SolverAdapter(max_iter=3000, tol=1e-8)


def check_network_invariants(result, network, voltage_band=True):
    assert np.allclose(result.voltage_real.loc[1], network.Gen, atol=TOL)
    assert np.allclose(result.voltage_imag.loc[1], 0.0, atol=TOL)
    assert np.allclose(result.pgen.loc[2:], 0.0, atol=TOL)
    assert np.allclose(result.qgen.loc[2:], 0.0, atol=TOL)
    if voltage_band:
        magnitude = result.voltage_magnitude.loc[2:] ** 2
        assert (magnitude >= 0.95 ** 2 - TOL).all().all()
        assert (magnitude <= 1.05 ** 2 + TOL).all().all()


def test_smart_charging_respects_connection_window(network, profiles, settings, adapter):
    ev = ElectricVehicle(id=1, capacity=10.0, rated_power=5.0, efficiency=0.9, arrival=2, departure=4,
                         soc_initial=0.2, soc_target=0.9, bus=2)

    result = run_charging_mode(ChargingMode.SMART, network, profiles, EVFleet([ev]), settings, adapter)

    soc = result.soc[1]
    assert result.power.loc[1, 1] == pytest.approx(0.0, abs=TOL)
    assert soc[2] == pytest.approx(soc[1], abs=TOL)
    assert soc[1] == pytest.approx(0.2, abs=TOL)
    assert soc[2] <= soc[3] + TOL
    assert soc[3] <= soc[4] + TOL
    # terminal period carries no power decision
    assert 4 not in result.power.index
    check_network_invariants(result, network)


def test_uncoordinated_schedule_reaches_full_target(adapter):
    settings = ProblemSettings(horizon=TimeHorizon(T=6))
    ev = ElectricVehicle(id=1, capacity=10.0, rated_power=5.0, efficiency=0.9, arrival=1, departure=6,
                         soc_initial=0.1, soc_target=1.0, bus=2)
    model = build_scheduling_model(ev, settings)

    adapter.solve(model, ChargingMode.UNCOORDINATED, stage='scheduling EV 1')
    soc, power = schedule_tables([model])

    assert soc.loc[6, 1] == pytest.approx(1.0, abs=1e-4)
    assert (power[1] <= 5.0 + TOL).all()


def test_v2g_discharges_without_violating_soc_bounds(network, profiles, settings, adapter):
    ev = ElectricVehicle(id=1, capacity=10.0, rated_power=5.0, efficiency=0.9, arrival=1, departure=4,
                         soc_initial=1.0, soc_target=0.2, bus=3)

    result = run_charging_mode(ChargingMode.V2G, network, profiles, EVFleet([ev]), settings, adapter)

    assert (result.soc[1] >= -TOL).all()
    assert result.soc.loc[4, 1] < 1.0
    assert result.p_dis[1].max() > 0.0
    check_network_invariants(result, network)


@pytest.mark.parametrize('mode', [ChargingMode.SMART_REACTIVE, ChargingMode.V2G_REACTIVE])
def test_reactive_modes_stay_within_apparent_power(mode, network, profiles, fleet, settings, adapter):
    result = run_charging_mode(mode, network, profiles, fleet, settings, adapter)

    active = result.net_power if mode == ChargingMode.V2G_REACTIVE else result.power
    for ev in fleet:
        s_app = ev.apparent_power(settings.s_app_factor)
        for t in result.reactive.index:
            if ev.is_connected(t):
                assert active.loc[t, ev.id] ** 2 + result.reactive.loc[t, ev.id] ** 2 <= s_app ** 2 + 1e-4
            else:
                assert result.reactive.loc[t, ev.id] == pytest.approx(0.0, abs=TOL)
    check_network_invariants(result, network)


def test_uncoordinated_pipeline(network, profiles, fleet, settings, adapter):
    result = run_charging_mode(ChargingMode.UNCOORDINATED, network, profiles, fleet, settings, adapter)

    assert list(result.soc.columns) == [1, 2]
    assert result.power.loc[1, 2] == pytest.approx(0.0, abs=TOL)
    check_network_invariants(result, network, voltage_band=False)
