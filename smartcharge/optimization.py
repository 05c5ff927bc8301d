"""
Run one charging mode end to end: build, solve, assemble.
"""
import logging
import time

from smartcharge.modes import ChargingMode
from smartcharge.problem_builder import build_charging_model, build_power_flow_model, build_scheduling_model, \
    check_inputs
from smartcharge.results import assemble_result, assemble_uncoordinated_result, schedule_tables

logger = logging.getLogger(__name__)


def run_charging_mode(mode, network, profiles, fleet, settings, solver, cancel_event=None):
    """
    Build and solve the problem(s) of ``mode`` and return its result record.

    Parameters
    ----------
    mode : ChargingMode or int
        Charging mode code 1-5.
    network : NetworkData
    profiles : ProfileData
    fleet : EVFleet
    settings : ProblemSettings
    solver : SolverAdapter
        Adapter performing each blocking solve.
    cancel_event : threading.Event, optional
        Checked before every solve.

    Returns
    -------
    ChargingResult
        Mode-specific record (see :mod:`smartcharge.results`).

    Raises
    ------
    ConfigurationError
        If the inputs are inconsistent; raised before any solve.
    SolverFailure
        If any solve fails. For mode 1 no result is returned when the power
        flow fails after successful scheduling solves.
    """
    mode = ChargingMode.from_code(mode)
    check_inputs(network, profiles, fleet, settings.horizon)

    start_time = time.time()
    logger.info('Running mode %d: %s', mode, mode.description)
    if mode.features.coordinated:
        model = build_charging_model(mode, network, profiles, fleet, settings)
        solver.solve(model, mode, stage='joint model', cancel_event=cancel_event)
        result = assemble_result(model)
    else:
        result = _run_uncoordinated(network, profiles, fleet, settings, solver, cancel_event)
    logger.info('Mode %d finished in %.3f seconds', mode, time.time() - start_time)
    return result


def _run_uncoordinated(network, profiles, fleet, settings, solver, cancel_event):
    mode = ChargingMode.UNCOORDINATED
    scheduling_models = []
    for ev in fleet:
        model = build_scheduling_model(ev, settings)
        solver.solve(model, mode, stage=f'scheduling EV {ev.id}', cancel_event=cancel_event)
        scheduling_models.append(model)
    soc, power = schedule_tables(scheduling_models)
    logger.info('Scheduled %d EVs independently', len(scheduling_models))

    ev_load = fleet.aggregate_schedule(power, network.nbus, settings.horizon.T, network.Spu)
    power_flow = build_power_flow_model(network, profiles, ev_load, settings)
    solver.solve(power_flow, mode, stage='power flow', cancel_event=cancel_event)
    return assemble_uncoordinated_result(soc, power, power_flow)
