import os
import sqlite3

import numpy as np
import pytest
import yaml

import EVSmartCharge as driver
from smartcharge import data_helper as dh
from smartcharge.modes import ChargingMode
from smartcharge.results import SmartChargingResult

from conftest import SPU, FakeAdapter, base_config, chain_admittance, write_admittance


@pytest.fixture
def config_path(tmp_path):
    data_path = tmp_path / 'data'
    data_path.mkdir()
    write_admittance(data_path / 'InitialAdmittanceMatrix.csv', chain_admittance(3))
    dh.write_matrix_csv(np.full((3, 4), 20.0), str(data_path / 'Pload_matrix.csv'))
    dh.write_matrix_csv(np.full((3, 4), 5.0), str(data_path / 'Qload_matrix.csv'))
    dh.write_matrix_csv(np.zeros((3, 4)), str(data_path / 'PV_matrix.csv'))

    config = base_config(data_path, output_path=str(tmp_path / 'output'), log_path=str(tmp_path / 'logs'),
                         export_matrices=True, solver={'name': 'ipopt', 'max_iter': 100})
    path = tmp_path / 'config.yml'
    path.write_text(yaml.safe_dump(config))
    return str(path)


def test_workflow_with_fake_solver(config_path, tmp_path):
    ev_charge = driver.EVSmartCharge(config_path)
    assert ev_charge.solver.max_iter == 100
    ev_charge.solver = FakeAdapter()

    ev_charge.get_data()
    result = ev_charge.solve_model(ChargingMode.SMART)
    ev_charge.export_results()

    assert isinstance(result, SmartChargingResult)
    assert os.path.exists(tmp_path / 'output' / 'result.sqlite')
    saved = dh.load_matrix_csv(str(tmp_path / 'output' / 'BaseLoad_pu.csv'))
    assert np.allclose(saved, 20.0 * 1000 / SPU)


def test_export_before_solve(config_path):
    ev_charge = driver.EVSmartCharge(config_path)

    with pytest.raises(ValueError):
        ev_charge.export_results()
    with pytest.raises(ValueError):
        ev_charge.solve_model(2)


def test_main_runs_selected_mode(config_path, tmp_path, monkeypatch):
    adapter = FakeAdapter()
    monkeypatch.setattr(driver.SolverAdapter, 'from_config', classmethod(lambda cls, config: adapter))

    assert driver.main(['--config', config_path, '--mode', '4']) == 0
    assert adapter.stages == ['joint model']
    cnx = sqlite3.connect(str(tmp_path / 'output' / 'result.sqlite'))
    try:
        tables = {row[0] for row in cnx.execute("SELECT name FROM sqlite_master WHERE type='table'")}
    finally:
        cnx.close()
    assert {'P_char', 'P_dis'} <= tables


def test_main_reports_failure_and_exports_nothing(config_path, tmp_path, monkeypatch):
    adapter = FakeAdapter(fail_stage='power flow')
    monkeypatch.setattr(driver.SolverAdapter, 'from_config', classmethod(lambda cls, config: adapter))

    assert driver.main(['--config', config_path, '--mode', '1']) == 1
    assert adapter.stages[-1] == 'power flow'
    assert not os.path.exists(tmp_path / 'output' / 'result.sqlite')


def test_main_asks_for_mode(config_path, monkeypatch):
    adapter = FakeAdapter()
    monkeypatch.setattr(driver.SolverAdapter, 'from_config', classmethod(lambda cls, config: adapter))
    monkeypatch.setattr(driver.h, 'prompt_mode', lambda: ChargingMode.SMART_REACTIVE)

    assert driver.main(['--config', config_path]) == 0
    assert adapter.stages == ['joint model']


def test_main_invalid_data(config_path, monkeypatch):
    with open(config_path) as f:
        config = yaml.safe_load(f)
    config['nbus'] = 5
    with open(config_path, 'w') as f:
        yaml.safe_dump(config, f)

    assert driver.main(['--config', config_path, '--mode', '2']) == 2


@pytest.mark.parametrize('key, values, mode', [('ev_bus', [2, 5], '2'), ('departure_time', [4, 9], '1')])
def test_main_fleet_outside_network_or_horizon(config_path, monkeypatch, key, values, mode):
    adapter = FakeAdapter()
    monkeypatch.setattr(driver.SolverAdapter, 'from_config', classmethod(lambda cls, config: adapter))
    with open(config_path) as f:
        config = yaml.safe_load(f)
    config['ev'][key] = values
    with open(config_path, 'w') as f:
        yaml.safe_dump(config, f)

    assert driver.main(['--config', config_path, '--mode', mode]) == 2
    assert adapter.stages == []


def test_main_rejects_unknown_mode(config_path):
    with pytest.raises(SystemExit):
        driver.main(['--config', config_path, '--mode', '9'])


def test_main_creates_config_from_template(tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)
    (tmp_path / 'config_template.yml').write_text('T: 24\n')

    assert driver.main(['--config', 'config.yml']) == 0
    assert (tmp_path / 'config.yml').exists()
