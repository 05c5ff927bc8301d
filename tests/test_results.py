import numpy as np
import pytest
from pyomo.environ import Var

from smartcharge.modes import ChargingMode
from smartcharge.problem_builder import build_charging_model, build_power_flow_model, build_scheduling_model
from smartcharge.results import ReactiveChargingResult, SmartChargingResult, UncoordinatedResult, V2GResult, \
    V2GReactiveResult, assemble_result, assemble_uncoordinated_result, schedule_tables


def fill(model, val=0.5):
    for var in model.component_data_objects(Var):
        var.set_value(val)
    return model


@pytest.mark.parametrize('mode, record_type, power_tables', [
    (ChargingMode.SMART, SmartChargingResult, {'P_ev'}),
    (ChargingMode.SMART_REACTIVE, ReactiveChargingResult, {'P_ev', 'Q_ev'}),
    (ChargingMode.V2G, V2GResult, {'P_char', 'P_dis'}),
    (ChargingMode.V2G_REACTIVE, V2GReactiveResult, {'P_char', 'P_dis', 'Q_ev'}),
])
def test_record_type_per_mode(mode, record_type, power_tables, network, profiles, fleet, settings):
    model = fill(build_charging_model(mode, network, profiles, fleet, settings))

    result = assemble_result(model)

    assert type(result) is record_type
    assert result.mode == mode
    assert set(result.tables()) == {'SOC', 'V_Real', 'V_Imag', 'Pgen', 'Qgen'} | power_tables


def test_values_are_copied_unchanged(network, profiles, fleet, settings):
    model = fill(build_charging_model(ChargingMode.V2G_REACTIVE, network, profiles, fleet, settings))
    model.vSoc_EV[2, 3].set_value(0.42)
    model.vCh_EV[1, 2].set_value(6.5)
    model.vDch_EV[1, 2].set_value(1.5)
    model.vQ_EV[2, 2].set_value(-0.7)
    model.vV_re[3, 4].set_value(0.97)

    result = assemble_result(model)

    assert result.soc.shape == (4, 2)
    assert result.soc.index.name == 'period'
    assert result.soc.loc[3, 2] == 0.42
    assert result.p_char.shape == (3, 2)
    assert result.p_char.loc[2, 1] == 6.5
    assert result.net_power.loc[2, 1] == pytest.approx(5.0)
    assert result.reactive.loc[2, 2] == -0.7
    assert result.voltage_real.loc[3, 4] == 0.97
    assert result.voltage_real.shape == (3, 4)


def test_voltage_magnitude(network, profiles, fleet, settings):
    model = fill(build_charging_model(ChargingMode.SMART, network, profiles, fleet, settings))
    model.vV_re[2, 1].set_value(0.6)
    model.vV_im[2, 1].set_value(0.8)

    result = assemble_result(model)

    assert result.voltage_magnitude.loc[2, 1] == pytest.approx(1.0)


def test_objective_value(network, profiles, fleet, settings):
    model = fill(build_charging_model(ChargingMode.SMART, network, profiles, fleet, settings))

    result = assemble_result(model)

    # 4 periods, targets 0.8 and 0.6
    assert result.objective == pytest.approx(4 * (0.3 ** 2 + 0.1 ** 2))


def test_uncoordinated_result(network, profiles, fleet, settings):
    scheduling = [fill(build_scheduling_model(ev, settings), 0.25) for ev in fleet]
    soc, power = schedule_tables(scheduling)
    power_flow = fill(build_power_flow_model(network, profiles, np.zeros((3, 4)), settings), 1.0)

    result = assemble_uncoordinated_result(soc, power, power_flow)

    assert isinstance(result, UncoordinatedResult)
    assert result.mode == ChargingMode.UNCOORDINATED
    assert list(result.soc.columns) == [1, 2]
    assert list(result.power.index) == [1, 2, 3]
    assert set(result.tables()) == {'SOC', 'V_Real', 'V_Imag', 'Pgen', 'Qgen', 'P_ev'}
    assert (result.pgen.to_numpy() == 1.0).all()


def test_schedule_tables_without_evs():
    soc, power = schedule_tables([])

    assert soc.empty
    assert power.empty
