"""
Result records of a solved charging mode.

Every mode has its own record type holding exactly the schedules that
mode declares. Values are copied unchanged from the solver's primal
solution into pandas DataFrames:

- EV tables: rows are periods (SOC) or intervals (power), columns EV ids.
- Bus tables: rows are buses, columns periods.
"""
from dataclasses import dataclass

import numpy as np
import pandas as pd
from pyomo.environ import value

from smartcharge.modes import ChargingMode


def ev_table(var, evs, periods, index_name='interval') -> pd.DataFrame:
    df = pd.DataFrame({v: [var[v, t].value for t in periods] for v in evs}, index=list(periods), dtype=float)
    df.index.name = index_name
    df.columns.name = 'ev'
    return df


def bus_table(var, buses, periods) -> pd.DataFrame:
    df = pd.DataFrame([[var[i, t].value for t in periods] for i in buses],
                      index=list(buses), columns=list(periods), dtype=float)
    df.index.name = 'bus'
    df.columns.name = 'period'
    return df


@dataclass(frozen=True, eq=False)
class ChargingResult:
    """
    Fields shared by all modes.

    Attributes
    ----------
    mode : ChargingMode
    soc : pandas.DataFrame
        State of charge, periods x EVs.
    voltage_real, voltage_imag : pandas.DataFrame
        Rectangular bus voltages, buses x periods [p.u.].
    pgen, qgen : pandas.DataFrame
        Generation dispatch, buses x periods [p.u.].
    objective : float
        Objective value of the network model.
    """
    mode: ChargingMode
    soc: pd.DataFrame
    voltage_real: pd.DataFrame
    voltage_imag: pd.DataFrame
    pgen: pd.DataFrame
    qgen: pd.DataFrame
    objective: float

    @property
    def voltage_magnitude(self) -> pd.DataFrame:
        return np.sqrt(self.voltage_real ** 2 + self.voltage_imag ** 2)

    def tables(self) -> dict:
        """All result tables by name, in export order."""
        return {
            'SOC': self.soc,
            'V_Real': self.voltage_real,
            'V_Imag': self.voltage_imag,
            'Pgen': self.pgen,
            'Qgen': self.qgen,
        }


@dataclass(frozen=True, eq=False)
class UncoordinatedResult(ChargingResult):
    power: pd.DataFrame

    def tables(self) -> dict:
        return {**super().tables(), 'P_ev': self.power}


@dataclass(frozen=True, eq=False)
class SmartChargingResult(ChargingResult):
    power: pd.DataFrame

    def tables(self) -> dict:
        return {**super().tables(), 'P_ev': self.power}


@dataclass(frozen=True, eq=False)
class ReactiveChargingResult(ChargingResult):
    power: pd.DataFrame
    reactive: pd.DataFrame

    def tables(self) -> dict:
        return {**super().tables(), 'P_ev': self.power, 'Q_ev': self.reactive}


@dataclass(frozen=True, eq=False)
class V2GResult(ChargingResult):
    p_char: pd.DataFrame
    p_dis: pd.DataFrame

    @property
    def net_power(self) -> pd.DataFrame:
        return self.p_char - self.p_dis

    def tables(self) -> dict:
        return {**super().tables(), 'P_char': self.p_char, 'P_dis': self.p_dis}


@dataclass(frozen=True, eq=False)
class V2GReactiveResult(V2GResult):
    reactive: pd.DataFrame

    def tables(self) -> dict:
        return {**super().tables(), 'Q_ev': self.reactive}


def _network_fields(model) -> dict:
    return {
        'voltage_real': bus_table(model.vV_re, model.Buses, model.Time),
        'voltage_imag': bus_table(model.vV_im, model.Buses, model.Time),
        'pgen': bus_table(model.vPgen, model.Buses, model.Time),
        'qgen': bus_table(model.vQgen, model.Buses, model.Time),
        'objective': value(model.obj),
    }


def assemble_result(model):
    """
    Extract the result record of a solved coordinated model (modes 2-5).
    """
    mode = ChargingMode(model.mode)
    fields = _network_fields(model)
    fields['soc'] = ev_table(model.vSoc_EV, model.EVs, model.Time, index_name='period')
    features = mode.features
    if features.v2g_support:
        fields['p_char'] = ev_table(model.vCh_EV, model.EVs, model.Intervals)
        fields['p_dis'] = ev_table(model.vDch_EV, model.EVs, model.Intervals)
    else:
        fields['power'] = ev_table(model.vCh_EV, model.EVs, model.Intervals)
    if features.reactive_support:
        fields['reactive'] = ev_table(model.vQ_EV, model.EVs, model.Intervals)

    record_type = {
        ChargingMode.SMART: SmartChargingResult,
        ChargingMode.SMART_REACTIVE: ReactiveChargingResult,
        ChargingMode.V2G: V2GResult,
        ChargingMode.V2G_REACTIVE: V2GReactiveResult,
    }[mode]
    return record_type(mode=mode, **fields)


def schedule_tables(scheduling_models):
    """
    Combine solved per-EV scheduling models into SOC and power tables.

    Returns
    -------
    tuple of pandas.DataFrame
        ``(soc, power)`` with one column per EV.
    """
    soc = [ev_table(m.vSoc_EV, m.EVs, m.Time, index_name='period') for m in scheduling_models]
    power = [ev_table(m.vCh_EV, m.EVs, m.Intervals) for m in scheduling_models]
    if not soc:
        return pd.DataFrame(dtype=float), pd.DataFrame(dtype=float)
    return pd.concat(soc, axis=1), pd.concat(power, axis=1)


def assemble_uncoordinated_result(soc, power, power_flow_model):
    """
    Build the mode 1 record from the schedule tables and the solved power flow.
    """
    return UncoordinatedResult(mode=ChargingMode.UNCOORDINATED, soc=soc, power=power,
                               **_network_fields(power_flow_model))
