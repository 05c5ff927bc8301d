"""
Pyomo formulations of the five EV charging modes.

All modes share one template: a multi-period AC power flow in rectangular
current-injection coordinates plus per-EV state-of-charge dynamics. The
mode's :class:`~smartcharge.modes.ModeFeatures` decide which EV variables
exist (charging, discharging, reactive power) and which constraints are
attached (apparent-power circle, voltage band).

Mode 1 is not a single problem: every EV is scheduled on its own with
:func:`build_scheduling_model` and the resulting load is injected into
:func:`build_power_flow_model`. Modes 2-5 are one joint model each, built by
:func:`build_charging_model`.

Naming follows the usual convention of the code base: ``pXxx`` are
parameters, ``vXxx`` decision variables and ``eXxx`` derived expressions.
"""
import logging
import time
from dataclasses import dataclass

from pyomo.environ import ConcreteModel, Var, Param, Set, RangeSet, Constraint, Expression, Objective, \
    minimize, value, Reals, NonNegativeReals

from smartcharge.errors import ConfigurationError
from smartcharge.ev_fleet import EVFleet
from smartcharge.modes import ChargingMode, ModeFeatures
from smartcharge.network import NetworkData, ProfileData, TimeHorizon

logger = logging.getLogger(__name__)

SCHEDULING_FEATURES = ChargingMode.UNCOORDINATED.features


@dataclass(frozen=True)
class ProblemSettings:
    """
    Settings shared by every model build.

    Attributes
    ----------
    horizon : TimeHorizon
        Number of periods and period length [h].
    v_min, v_max : float
        Voltage band in per unit, enforced in modes 2-5.
    s_app_factor : float
        Converter oversizing; ``S_app = s_app_factor * S_ev``.
    """
    horizon: TimeHorizon
    v_min: float = 0.95
    v_max: float = 1.05
    s_app_factor: float = 1.1

    def __post_init__(self):
        if not 0 < self.v_min < self.v_max:
            raise ConfigurationError(f"Invalid voltage band [{self.v_min}, {self.v_max}]")
        if self.s_app_factor < 1:
            raise ConfigurationError(f"Apparent power factor must be >= 1, got {self.s_app_factor}")


def check_inputs(network: NetworkData, profiles: ProfileData, fleet: EVFleet, horizon: TimeHorizon):
    """
    Validate that all inputs agree on ``(nbus, T)`` before building anything.

    Raises
    ------
    ConfigurationError
        On profile dimension mismatch, EV bus index beyond ``nbus`` or a
        departure beyond ``T``.
    """
    profiles.check_dimensions(network.nbus, horizon.T)
    fleet.validate(network.nbus, horizon.T)


# ============================================
# Shared network skeleton
# ============================================
def _add_network(model, network: NetworkData, profiles: ProfileData, horizon: TimeHorizon):
    model.Buses = RangeSet(1, network.nbus, doc='Grid-buses')
    model.Time = RangeSet(1, horizon.T, doc='Time periods')
    model.slack_bus = network.slack_bus

    model.pG = Param(model.Buses, model.Buses, initialize=lambda m, i, j: float(network.G[i - 1, j - 1]),
                     domain=Reals, doc='Bus conductance matrix [p.u.]')
    model.pB = Param(model.Buses, model.Buses, initialize=lambda m, i, j: float(network.B[i - 1, j - 1]),
                     domain=Reals, doc='Bus susceptance matrix [p.u.]')
    model.pGen = Param(initialize=float(network.Gen), domain=NonNegativeReals,
                       doc='Slack bus voltage magnitude [p.u.]')
    model.pLoad_P = Param(model.Buses, model.Time,
                          initialize=lambda m, i, t: float(profiles.base_load[i - 1, t - 1]),
                          domain=Reals, doc='Baseline active load [p.u.]')
    model.pLoad_Q = Param(model.Buses, model.Time,
                          initialize=lambda m, i, t: float(profiles.base_qload[i - 1, t - 1]),
                          domain=Reals, doc='Baseline reactive load [p.u.]')
    model.pSolar = Param(model.Buses, model.Time,
                         initialize=lambda m, i, t: float(profiles.solar[i - 1, t - 1]),
                         domain=Reals, doc='Solar injection [p.u.]')

    model.vPgen = Var(model.Buses, model.Time, domain=Reals, doc='Active generation')
    model.vQgen = Var(model.Buses, model.Time, domain=Reals, doc='Reactive generation')
    model.vV_re = Var(model.Buses, model.Time, domain=Reals, initialize=float(network.Gen),
                      doc='Real part of bus voltage')
    model.vV_im = Var(model.Buses, model.Time, domain=Reals, initialize=0.0,
                      doc='Imaginary part of bus voltage')
    model.vI_re = Var(model.Buses, model.Time, domain=Reals, doc='Real part of injected current')
    model.vI_im = Var(model.Buses, model.Time, domain=Reals, doc='Imaginary part of injected current')


def _add_power_flow(model, settings: ProblemSettings, voltage_band: bool):
    # expects eEV_load_P and eEV_load_Q to be defined on (Buses, Time)

    @model.Constraint(model.Buses, model.Time)
    def current_real_constraint(model, i, t):
        r"""
        Real part of the current injection :math:`I = Y V`.

        .. math::

            I^{re}_{i,t} = \sum_j G_{ij} V^{re}_{j,t} - B_{ij} V^{im}_{j,t}
        """
        return model.vI_re[i, t] == sum(model.pG[i, j] * model.vV_re[j, t] - model.pB[i, j] * model.vV_im[j, t]
                                        for j in model.Buses)

    @model.Constraint(model.Buses, model.Time)
    def current_imag_constraint(model, i, t):
        r"""
        Imaginary part of the current injection :math:`I = Y V`.

        .. math::

            I^{im}_{i,t} = \sum_j B_{ij} V^{re}_{j,t} + G_{ij} V^{im}_{j,t}
        """
        return model.vI_im[i, t] == sum(model.pB[i, j] * model.vV_re[j, t] + model.pG[i, j] * model.vV_im[j, t]
                                        for j in model.Buses)

    @model.Constraint(model.Buses, model.Time)
    def power_balance_active_constraint(model, i, t):
        r"""
        Active power balance at each bus.

        .. math::

            P^{gen}_{i,t} - P^{load}_{i,t} + P^{PV}_{i,t} - P^{EV}_{i,t}
            = V^{re}_{i,t} I^{re}_{i,t} + V^{im}_{i,t} I^{im}_{i,t}
        """
        return (model.vPgen[i, t] - model.pLoad_P[i, t] + model.pSolar[i, t] - model.eEV_load_P[i, t]
                == model.vV_re[i, t] * model.vI_re[i, t] + model.vV_im[i, t] * model.vI_im[i, t])

    @model.Constraint(model.Buses, model.Time)
    def power_balance_reactive_constraint(model, i, t):
        r"""
        Reactive power balance at each bus.

        .. math::

            Q^{gen}_{i,t} - Q^{load}_{i,t} - Q^{EV}_{i,t}
            = V^{im}_{i,t} I^{re}_{i,t} - V^{re}_{i,t} I^{im}_{i,t}
        """
        return (model.vQgen[i, t] - model.pLoad_Q[i, t] - model.eEV_load_Q[i, t]
                == model.vV_im[i, t] * model.vI_re[i, t] - model.vV_re[i, t] * model.vI_im[i, t])

    @model.Constraint(model.Time)
    def slack_voltage_real_constraint(model, t):
        r"""
        Fix the slack bus voltage magnitude: :math:`V^{re}_{1,t} = V^{gen}`.
        """
        return model.vV_re[model.slack_bus, t] == model.pGen

    @model.Constraint(model.Time)
    def slack_voltage_imag_constraint(model, t):
        r"""
        Zero angle reference at the slack bus: :math:`V^{im}_{1,t} = 0`.
        """
        return model.vV_im[model.slack_bus, t] == 0.0

    @model.Constraint(model.Buses, model.Time)
    def slack_only_active_generation(model, i, t):
        r"""
        No active generation away from the slack bus: :math:`P^{gen}_{i,t} = 0, i \neq 1`.
        """
        if i == model.slack_bus:
            return Constraint.Skip
        return model.vPgen[i, t] == 0.0

    @model.Constraint(model.Buses, model.Time)
    def slack_only_reactive_generation(model, i, t):
        r"""
        No reactive generation away from the slack bus: :math:`Q^{gen}_{i,t} = 0, i \neq 1`.
        """
        if i == model.slack_bus:
            return Constraint.Skip
        return model.vQgen[i, t] == 0.0

    if voltage_band:
        model.pV_min = Param(initialize=settings.v_min, domain=NonNegativeReals, doc='Lower voltage limit [p.u.]')
        model.pV_max = Param(initialize=settings.v_max, domain=NonNegativeReals, doc='Upper voltage limit [p.u.]')

        @model.Constraint(model.Buses, model.Time)
        def voltage_band_constraint(model, i, t):
            r"""
            Squared voltage magnitude within the band.

            .. math::

                V_{min}^2 \leq (V^{re}_{i,t})^2 + (V^{im}_{i,t})^2 \leq V_{max}^2
            """
            return (value(model.pV_min) ** 2,
                    model.vV_re[i, t] ** 2 + model.vV_im[i, t] ** 2,
                    value(model.pV_max) ** 2)


# ============================================
# Shared EV skeleton
# ============================================
def _add_ev_dynamics(model, fleet: EVFleet, settings: ProblemSettings, features: ModeFeatures):
    horizon = settings.horizon
    model.EVs = Set(initialize=fleet.ids, ordered=True, doc='Electric Vehicles')
    if not hasattr(model, 'Time'):
        model.Time = RangeSet(1, horizon.T, doc='Time periods')
    model.Intervals = RangeSet(1, horizon.T - 1, doc='Charging intervals between periods')

    model.pDt = Param(initialize=float(horizon.dt), domain=NonNegativeReals, doc='Period length [h]')
    model.pCap = Param(model.EVs, initialize={ev.id: ev.capacity for ev in fleet},
                       domain=NonNegativeReals, doc='Battery capacity of EVs [kWh]')
    model.pS_ev = Param(model.EVs, initialize={ev.id: ev.rated_power for ev in fleet},
                        domain=NonNegativeReals, doc='Rated charging power of EVs [kW]')
    model.pEta = Param(model.EVs, initialize={ev.id: ev.efficiency for ev in fleet},
                       domain=NonNegativeReals, doc='Charging efficiency of EVs')
    model.pSOC_init = Param(model.EVs, initialize={ev.id: ev.soc_initial for ev in fleet},
                            domain=NonNegativeReals, doc='Initial state of charge of EVs')
    model.pSOC_target = Param(model.EVs, initialize={ev.id: ev.soc_target for ev in fleet},
                              domain=NonNegativeReals, doc='Target state of charge of EVs')

    model.vSoc_EV = Var(model.EVs, model.Time, domain=NonNegativeReals, bounds=(0, 1),
                        doc='State of charge of EVs')
    model.vCh_EV = Var(model.EVs, model.Intervals, domain=NonNegativeReals,
                       bounds=lambda m, v, t: (0, m.pS_ev[v]), doc='Charging power of EVs [kW]')
    if features.v2g_support:
        model.vDch_EV = Var(model.EVs, model.Intervals, domain=NonNegativeReals,
                            bounds=lambda m, v, t: (0, m.pS_ev[v]), doc='Discharging power of EVs [kW]')
    if features.reactive_support:
        model.pS_app = Param(model.EVs, initialize={ev.id: ev.apparent_power(settings.s_app_factor) for ev in fleet},
                             domain=NonNegativeReals, doc='Apparent power rating of EV converters [kVA]')
        model.pQ_max = Param(model.EVs,
                             initialize={ev.id: ev.max_reactive_power(settings.s_app_factor) for ev in fleet},
                             domain=NonNegativeReals, doc='Reactive power limit of EVs [kvar]')
        model.vQ_EV = Var(model.EVs, model.Intervals, domain=Reals,
                          bounds=lambda m, v, t: (-m.pQ_max[v], m.pQ_max[v]), doc='Reactive power of EVs [kvar]')

    def net_power_rule(model, v, t):
        if features.v2g_support:
            return model.vCh_EV[v, t] - model.vDch_EV[v, t]
        return model.vCh_EV[v, t]
    model.eP_net_EV = Expression(model.EVs, model.Intervals, rule=net_power_rule,
                                 doc='Net active power drawn by EVs [kW]')

    @model.Constraint(model.EVs)
    def soc_initial_constraint(model, v):
        r"""
        Initial state of charge: :math:`SOC_{v,1} = SOC^{init}_v`.
        """
        return model.vSoc_EV[v, model.Time.first()] == model.pSOC_init[v]

    @model.Constraint(model.EVs, model.Intervals)
    def soc_dynamics_constraint(model, v, t):
        r"""
        EV state-of-charge evolution.

        Inside the connection window :math:`a_v \leq t < d_v`:

        .. math::

            SOC_{v,t+1} = SOC_{v,t} + \frac{\eta_v P^{ch}_{v,t} \Delta t}{E_v}
                          - \frac{P^{dch}_{v,t} \Delta t}{\eta_v E_v}

        (the discharge term only exists with V2G). Outside the window the SOC
        is held: :math:`SOC_{v,t+1} = SOC_{v,t}`.
        """
        if not fleet[v].is_connected(t):
            return model.vSoc_EV[v, t + 1] == model.vSoc_EV[v, t]
        delta = model.pEta[v] * model.vCh_EV[v, t] * model.pDt / model.pCap[v]
        if features.v2g_support:
            delta = delta - model.vDch_EV[v, t] * model.pDt / (model.pEta[v] * model.pCap[v])
        return model.vSoc_EV[v, t + 1] == model.vSoc_EV[v, t] + delta

    @model.Constraint(model.EVs, model.Intervals)
    def idle_charge_constraint(model, v, t):
        r"""
        No charging while disconnected: :math:`P^{ch}_{v,t} = 0` for :math:`t \notin [a_v, d_v)`.
        """
        if fleet[v].is_connected(t):
            return Constraint.Skip
        return model.vCh_EV[v, t] == 0.0

    if features.v2g_support:
        @model.Constraint(model.EVs, model.Intervals)
        def idle_discharge_constraint(model, v, t):
            r"""
            No discharging while disconnected: :math:`P^{dch}_{v,t} = 0` for :math:`t \notin [a_v, d_v)`.
            """
            if fleet[v].is_connected(t):
                return Constraint.Skip
            return model.vDch_EV[v, t] == 0.0

    if features.reactive_support:
        @model.Constraint(model.EVs, model.Intervals)
        def idle_reactive_constraint(model, v, t):
            r"""
            No reactive support while disconnected: :math:`Q_{v,t} = 0` for :math:`t \notin [a_v, d_v)`.
            """
            if fleet[v].is_connected(t):
                return Constraint.Skip
            return model.vQ_EV[v, t] == 0.0

        @model.Constraint(model.EVs, model.Intervals)
        def apparent_power_constraint(model, v, t):
            r"""
            Converter apparent-power circle on net active and reactive power.

            .. math::

                (P^{ch}_{v,t} - P^{dch}_{v,t})^2 + Q_{v,t}^2 \leq S^{app\,2}_v
            """
            if not fleet[v].is_connected(t):
                return Constraint.Skip
            return model.eP_net_EV[v, t] ** 2 + model.vQ_EV[v, t] ** 2 <= model.pS_app[v] ** 2


def _add_soc_objective(model):
    model.obj = Objective(
        expr=sum((model.vSoc_EV[v, t] - model.pSOC_target[v]) ** 2 for v in model.EVs for t in model.Time),
        sense=minimize,
        doc=r"""
            Squared deviation of every EV's state of charge from its target.

            .. math::

                \min \sum_{t \in T} \sum_{v \in EVs} (SOC_{v,t} - SOC^{target}_v)^2
            """
    )


# ============================================
# Public builders
# ============================================
def build_scheduling_model(ev, settings: ProblemSettings) -> ConcreteModel:
    """
    Build the network-free scheduling problem of one EV (mode 1, stage 1).

    Parameters
    ----------
    ev : ElectricVehicle
        Vehicle to schedule.
    settings : ProblemSettings
        Horizon and limits.

    Returns
    -------
    pyomo.environ.ConcreteModel
        Model with ``vSoc_EV`` on ``(EVs, Time)``, ``vCh_EV`` on
        ``(EVs, Intervals)`` and the SOC-deviation objective, where ``EVs``
        only contains ``ev.id``.
    """
    if ev.departure > settings.horizon.T:
        raise ConfigurationError(
            f"EV {ev.id}: departure period {ev.departure} exceeds horizon T={settings.horizon.T}")
    model = ConcreteModel(name=f'UNCOORD_EV{ev.id}')
    model.mode = ChargingMode.UNCOORDINATED
    _add_ev_dynamics(model, EVFleet([ev]), settings, SCHEDULING_FEATURES)
    _add_soc_objective(model)
    return model


def build_power_flow_model(network: NetworkData, profiles: ProfileData, ev_load, settings: ProblemSettings,
                           ev_qload=None) -> ConcreteModel:
    """
    Build the power-flow problem with a fixed EV load (mode 1, stage 2).

    The model has no voltage band and minimizes the total active power
    loss :math:`\\sum_{i,t} P^{gen}_{i,t} - P^{load}_{i,t} + P^{PV}_{i,t} - P^{EV}_{i,t}`.

    Parameters
    ----------
    network : NetworkData
        Per-unit admittance data.
    profiles : ProfileData
        Baseline load and solar matrices.
    ev_load : array_like
        Aggregated EV active load, ``nbus x T`` in per unit.
    settings : ProblemSettings
        Horizon and limits.
    ev_qload : array_like, optional
        Aggregated EV reactive load; zero if omitted.
    """
    horizon = settings.horizon
    profiles.check_dimensions(network.nbus, horizon.T)
    for name, matrix in (('ev_load', ev_load), ('ev_qload', ev_qload)):
        if matrix is not None and tuple(getattr(matrix, 'shape', ())) != (network.nbus, horizon.T):
            raise ConfigurationError(f"{name} must have shape ({network.nbus}, {horizon.T})")

    start_time = time.time()
    logger.info('Creating power flow model with fixed EV load')
    model = ConcreteModel(name='PF')
    model.mode = ChargingMode.UNCOORDINATED
    _add_network(model, network, profiles, horizon)

    model.pEV_load_P = Param(model.Buses, model.Time, initialize=lambda m, i, t: float(ev_load[i - 1, t - 1]),
                             domain=Reals, doc='Fixed EV active load [p.u.]')
    model.pEV_load_Q = Param(model.Buses, model.Time,
                             initialize=lambda m, i, t: 0.0 if ev_qload is None else float(ev_qload[i - 1, t - 1]),
                             domain=Reals, doc='Fixed EV reactive load [p.u.]')
    model.eEV_load_P = Expression(model.Buses, model.Time, rule=lambda m, i, t: m.pEV_load_P[i, t])
    model.eEV_load_Q = Expression(model.Buses, model.Time, rule=lambda m, i, t: m.pEV_load_Q[i, t])

    _add_power_flow(model, settings, voltage_band=False)

    model.eP_loss = Expression(expr=sum(model.vPgen[i, t] - model.pLoad_P[i, t] + model.pSolar[i, t]
                                        - model.eEV_load_P[i, t]
                                        for i in model.Buses for t in model.Time))
    model.obj = Objective(expr=model.eP_loss, sense=minimize, doc='Total active power losses')

    logger.info('Power flow model created in %.3f seconds', time.time() - start_time)
    return model


def build_charging_model(mode, network: NetworkData, profiles: ProfileData, fleet: EVFleet,
                         settings: ProblemSettings) -> ConcreteModel:
    """
    Build the joint EV/network problem of a coordinated mode (2-5).

    Parameters
    ----------
    mode : ChargingMode or int
        Coordinated charging mode.
    network : NetworkData
        Per-unit admittance data.
    profiles : ProfileData
        Baseline load and solar matrices (``nbus x T``).
    fleet : EVFleet
        EVs to schedule.
    settings : ProblemSettings
        Horizon, voltage band and apparent-power factor.

    Returns
    -------
    pyomo.environ.ConcreteModel
        A fresh model. Building the same inputs twice yields structurally
        identical models.

    Raises
    ------
    ConfigurationError
        If the mode is not a coordinated mode or the inputs disagree on
        dimensions, bus indices or time windows.
    """
    mode = ChargingMode.from_code(mode)
    features = mode.features
    if not features.coordinated:
        raise ConfigurationError(
            f"Mode {int(mode)} is solved in two stages; use build_scheduling_model and build_power_flow_model")
    check_inputs(network, profiles, fleet, settings.horizon)

    start_time = time.time()
    logger.info('Creating Pyomo model for mode %d: %s', mode, mode.description)
    model = ConcreteModel(name=f'SMARTCHARGE_MODE{int(mode)}')
    model.mode = mode

    _add_network(model, network, profiles, settings.horizon)
    _add_ev_dynamics(model, fleet, settings, features)

    T = settings.horizon.T

    def ev_load_p_rule(model, i, t):
        return fleet.bus_injection(i, t, lambda v, tt: model.eP_net_EV[v, tt], T, network.Spu)

    def ev_load_q_rule(model, i, t):
        if not features.reactive_support:
            return 0.0
        return fleet.bus_injection(i, t, lambda v, tt: model.vQ_EV[v, tt], T, network.Spu)

    model.eEV_load_P = Expression(model.Buses, model.Time, rule=ev_load_p_rule,
                                  doc='Aggregated EV active load per bus [p.u.]')
    model.eEV_load_Q = Expression(model.Buses, model.Time, rule=ev_load_q_rule,
                                  doc='Aggregated EV reactive load per bus [p.u.]')

    _add_power_flow(model, settings, voltage_band=features.voltage_band)
    _add_soc_objective(model)

    logger.info('Pyomo model created in %.3f seconds', time.time() - start_time)
    return model
