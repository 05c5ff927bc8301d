"""
This module contains helper functions to read, convert and write the data
used by the EV smart-charging model.

Key Features
------------
- Parsing of complex admittance entries in ``a+bi`` / ``a-bi`` text form.
- Loading of the bus admittance matrix and of per-bus, per-period matrices
  (comma delimited, no header).
- Building load and PV matrices from per-customer peak values and normalized
  daily curves.
- Export of result tables to SQLite and plotting of results with Plotly.

Usage
-----
This module is designed to be imported and used as a utility toolkit by
``SystemData`` and the ``EVSmartCharge`` driver.
"""

import logging
import os
import sqlite3

import numpy as np
import pandas as pd
import plotly.graph_objects as go
from plotly.subplots import make_subplots

from smartcharge.errors import ConfigurationError, ParseError

logger = logging.getLogger(__name__)


def parse_complex(text) -> complex:
    """
    Parse one complex admittance entry.

    Accepts ``'a+bi'``, ``'a-bi'``, ``'a+bim'``, ``'a + b im'`` and the native
    Python ``'a+bj'`` form as well as plain numbers.

    Raises
    ------
    ParseError
        If the entry is not a complex number.
    """
    if isinstance(text, (int, float, complex)) and not isinstance(text, bool):
        return complex(text)
    s = str(text).strip().replace(' ', '')
    if s.endswith('im'):
        s = s[:-2] + 'j'
    elif s.endswith('i'):
        s = s[:-1] + 'j'
    try:
        return complex(s)
    except ValueError:
        raise ParseError(f"Malformed complex number: {text!r}") from None


def _read_csv(filepath, header=None, **kwargs) -> pd.DataFrame:
    try:
        return pd.read_csv(filepath, header=header, **kwargs)
    except (pd.errors.ParserError, pd.errors.EmptyDataError) as err:
        raise ParseError(f"Could not parse {filepath}: {err}") from err


def load_admittance_matrix(filepath, nbus=None, header=False) -> np.ndarray:
    """
    Load the complex bus admittance matrix from a comma-delimited file.

    Parameters
    ----------
    filepath : str
        Path to the ``nbus x nbus`` matrix of complex entries.
    nbus : int, optional
        Declared number of buses.
    header : bool, optional
        Skip a first row of column labels.

    Returns
    -------
    numpy.ndarray
        Complex matrix in siemens.

    Raises
    ------
    ParseError
        If an entry is not a complex number.
    ConfigurationError
        If the matrix is not square or does not match ``nbus``.
    """
    df = _read_csv(filepath, header=0 if header else None, dtype=str, keep_default_na=False, skipinitialspace=True)
    Ybus = np.array([[parse_complex(x) for x in row] for row in df.values], dtype=complex)
    if Ybus.shape[0] != Ybus.shape[1]:
        raise ConfigurationError(f"Admittance matrix in {filepath} is not square: {Ybus.shape}")
    if nbus is not None and Ybus.shape[0] != nbus:
        raise ConfigurationError(f"Admittance matrix in {filepath} has {Ybus.shape[0]} buses, expected {nbus}")
    return Ybus


def load_matrix_csv(filepath, header=False) -> np.ndarray:
    """
    Load a numeric matrix written as comma-delimited rows.

    Files are headerless by default; with ``header=True`` the first row is
    treated as column labels and skipped.

    Raises
    ------
    ParseError
        If any entry is not numeric.
    """
    df = _read_csv(filepath, header=0 if header else None)
    try:
        matrix = df.apply(pd.to_numeric, errors='raise').to_numpy(dtype=float)
    except ValueError as err:
        raise ParseError(f"Non-numeric entry in {filepath}: {err}") from err
    return matrix


def write_matrix_csv(matrix, filepath):
    """
    Write a matrix as comma-delimited rows: one row per bus, one column per
    period, no header and no index.
    """
    directory = os.path.dirname(filepath)
    if directory:
        os.makedirs(directory, exist_ok=True)
    pd.DataFrame(np.asarray(matrix, dtype=float)).to_csv(filepath, header=False, index=False)


def load_power_data(filepath) -> pd.DataFrame:
    """
    Load per-customer peak readings.

    The file holds whitespace-delimited rows ``bus P Q PV`` (kW, kvar, kW)
    with one row per bus in bus order.

    Returns
    -------
    pandas.DataFrame
        Columns ``['bus', 'P', 'Q', 'PV']``.
    """
    df = _read_csv(filepath, sep=r'\s+')
    if df.shape[1] < 4:
        raise ParseError(f"{filepath} must have at least 4 columns (bus, P, Q, PV), got {df.shape[1]}")
    df = df.iloc[:, :4]
    df.columns = ['bus', 'P', 'Q', 'PV']
    try:
        return df.apply(pd.to_numeric, errors='raise')
    except ValueError as err:
        raise ParseError(f"Non-numeric entry in {filepath}: {err}") from err


def load_normalized_curves(filepath, load_column=0, pv_column=0):
    """
    Load the normalized daily load and PV curves.

    The first sheet holds the load shapes (one column per device class), the
    second sheet the PV shape. Non-numeric cells such as headers are dropped.

    Returns
    -------
    tuple of numpy.ndarray
        ``(load_shape, pv_shape)``.
    """
    sheets = pd.read_excel(filepath, sheet_name=[0, 1], header=None)
    load_shape = pd.to_numeric(sheets[0].iloc[:, load_column], errors='coerce').dropna().to_numpy(dtype=float)
    pv_shape = pd.to_numeric(sheets[1].iloc[:, pv_column], errors='coerce').dropna().to_numpy(dtype=float)
    return load_shape, pv_shape


def build_profile_matrices(power_data: pd.DataFrame, load_shape, pv_shape):
    """
    Build ``nbus x T`` load and PV matrices as outer products of each
    customer's peak value with its daily shape.

    Returns
    -------
    tuple of numpy.ndarray
        ``(Pload, Qload, PV)`` in the units of ``power_data``.
    """
    load_shape = np.asarray(load_shape, dtype=float)
    pv_shape = np.asarray(pv_shape, dtype=float)
    if load_shape.shape != pv_shape.shape:
        raise ConfigurationError(
            f"Load curve has {load_shape.size} periods but PV curve has {pv_shape.size}")
    Pload = np.outer(power_data['P'].to_numpy(dtype=float), load_shape)
    Qload = np.outer(power_data['Q'].to_numpy(dtype=float), load_shape)
    PV = np.outer(power_data['PV'].to_numpy(dtype=float), pv_shape)
    return Pload, Qload, PV


def results_to_sqlite(result, filename):
    """
    Save the tables of a result record to an SQLite database.

    Every table of ``result.tables()`` is written under its name, replacing
    an existing table. A ``summary`` table holds the mode and objective value.
    """
    directory = os.path.dirname(filename)
    if directory:
        os.makedirs(directory, exist_ok=True)

    cnx = sqlite3.connect(filename)
    try:
        for name, df in result.tables().items():
            table = df.copy()
            table.columns = [str(c) for c in table.columns]
            table.to_sql(name, cnx, if_exists='replace')
            logger.info('Table %s saved to SQLite', name)
        summary = pd.DataFrame({'mode': [int(result.mode)], 'objective': [result.objective]})
        summary.to_sql('summary', cnx, if_exists='replace', index=False)
        cnx.commit()
    finally:
        cnx.close()


def plot_results(result, show=True):
    """
    Plot SOC trajectories, EV active power and bus voltage magnitudes.

    Parameters
    ----------
    result : ChargingResult
        Solved mode result.
    show : bool, optional
        Display the figure. Defaults to True.

    Returns
    -------
    plotly.graph_objects.Figure
    """
    power = getattr(result, 'power', None)
    if power is None:
        power = result.net_power
    voltage = result.voltage_magnitude

    fig = make_subplots(rows=3, cols=1, shared_xaxes=True,
                        subplot_titles=('State of charge', 'EV active power [kW]', 'Voltage magnitude [p.u.]'))
    for ev in result.soc.columns:
        fig.add_trace(go.Scatter(x=result.soc.index, y=result.soc[ev], mode='lines', name=f'SOC EV {ev}'),
                      row=1, col=1)
    for ev in power.columns:
        fig.add_trace(go.Scatter(x=power.index, y=power[ev], mode='lines', name=f'P EV {ev}'), row=2, col=1)
    for bus in voltage.index:
        fig.add_trace(go.Scatter(x=voltage.columns, y=voltage.loc[bus], mode='lines', name=f'Bus {bus}',
                                 showlegend=False), row=3, col=1)

    fig.update_layout(title=f'Charging mode {int(result.mode)}', margin=dict(l=40, r=20, t=60, b=40))
    if show:
        fig.show()
    return fig
