import numpy as np
import pytest
from pyomo.environ import SolverFactory, Var

from smartcharge.errors import SolveCancelled, SolverFailure
from smartcharge.ev_fleet import ElectricVehicle, EVFleet
from smartcharge.network import NetworkData, ProfileData, TimeHorizon
from smartcharge.problem_builder import ProblemSettings

VPU = 12660.0
SPU = 100e6


def pytest_addoption(parser):
    parser.addoption('--require-ipopt', action='store_true',
                     help='fail instead of skipping the ipopt tests when ipopt is missing')


def pytest_collection_modifyitems(config, items):
    if SolverFactory('ipopt').available(exception_flag=False):
        return
    if config.getoption('--require-ipopt'):
        raise pytest.UsageError('--require-ipopt given but ipopt is not installed')
    skip = pytest.mark.skip(reason='ipopt is not installed')
    for item in items:
        if item.get_closest_marker('ipopt') is not None:
            item.add_marker(skip)


def chain_admittance(nbus, z=0.5 + 0.3j):
    # radial feeder 1-2-...-nbus with identical line impedance [ohm]
    y = 1 / z
    Ybus = np.zeros((nbus, nbus), dtype=complex)
    for k in range(nbus - 1):
        Ybus[k, k] += y
        Ybus[k + 1, k + 1] += y
        Ybus[k, k + 1] -= y
        Ybus[k + 1, k] -= y
    return Ybus


@pytest.fixture
def horizon():
    return TimeHorizon(T=4, dt=1.0)


@pytest.fixture
def settings(horizon):
    return ProblemSettings(horizon=horizon)


@pytest.fixture
def network():
    return NetworkData.from_admittance(chain_admittance(3), VPU, SPU, VPU, nbus=3)


@pytest.fixture
def profiles():
    # kW / kvar, 3 buses x 4 periods
    pload = np.array([[0, 0, 0, 0], [50, 60, 70, 40], [30, 40, 50, 20]], dtype=float)
    qload = 0.3 * pload
    pv = np.array([[0, 0, 0, 0], [0, 10, 20, 0], [0, 5, 10, 0]], dtype=float)
    return ProfileData.from_kw(pload, qload, pv, SPU)


@pytest.fixture
def ev_one():
    return ElectricVehicle(id=1, capacity=40.0, rated_power=7.0, efficiency=0.9, arrival=1, departure=4,
                           soc_initial=0.2, soc_target=0.8, bus=2)


@pytest.fixture
def ev_two():
    return ElectricVehicle(id=2, capacity=20.0, rated_power=5.0, efficiency=0.95, arrival=2, departure=3,
                           soc_initial=0.5, soc_target=0.6, bus=3)


@pytest.fixture
def fleet(ev_one, ev_two):
    return EVFleet([ev_one, ev_two])


class FakeAdapter:
    """Stands in for SolverAdapter: records the solves and writes fixed values."""

    def __init__(self, fail_stage=None, charge=2.0):
        self.fail_stage = fail_stage
        self.charge = charge
        self.stages = []

    def solve(self, model, mode, stage=None, cancel_event=None):
        if cancel_event is not None and cancel_event.is_set():
            raise SolveCancelled(mode, 'cancelled before solve', stage=stage)
        self.stages.append(stage)
        if stage == self.fail_stage:
            raise SolverFailure(mode, 'infeasible', stage=stage)
        for var in model.component_data_objects(Var):
            var.set_value(0.5)
        if hasattr(model, 'vCh_EV'):
            for index in model.vCh_EV:
                model.vCh_EV[index].set_value(self.charge)
        if hasattr(model, 'vV_re'):
            for index in model.vV_re:
                model.vV_re[index].set_value(1.0)
                model.vV_im[index].set_value(0.0)


def write_admittance(path, Ybus):
    rows = [','.join(f'{y.real}{y.imag:+}i' for y in row) for row in Ybus]
    path.write_text('\n'.join(rows) + '\n')


def base_config(data_path, **overrides):
    config = {
        'data_path': str(data_path),
        'nbus': 3,
        'Vpu': VPU,
        'Spu': SPU,
        'V_source': VPU,
        'T': 4,
        'dt': 1.0,
        'ev': {
            'n': 2,
            'eta': 0.9,
            'E': 40.0,
            'S_ev': 7.0,
            'SOC_initial': [0.2, 0.5],
            'SOC_target': [0.8, 0.6],
            'arrival_time': [1, 2],
            'departure_time': [4, 3],
            'ev_bus': [2, 3],
        },
    }
    config.update(overrides)
    return config
