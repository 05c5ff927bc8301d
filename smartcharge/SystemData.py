"""
system_data.py
===============


Utilities for loading and preparing system input data used by the EV
smart-charging model.


This module provides the `SystemData` class which centralizes all data-loading
and preprocessing steps required to build the Pyomo models of a radial
distribution feeder with EVs and rooftop PV.


The class wraps calls to `data_helper` (aliased as `dh`) and turns the raw
files into the immutable records consumed by the model builders.


Usage
-----
Create a SystemData instance from the parsed ``config.yml`` and call
``get_data()`` (or individual getters) before building a model. Example::


sd = SystemData(config)
sd.get_data()
"""
import logging
import os
import time

from smartcharge import data_helper as dh
from smartcharge import helper_functions as h
from smartcharge.ev_fleet import EVFleet
from smartcharge.network import NetworkData, ProfileData, TimeHorizon
from smartcharge.problem_builder import ProblemSettings, check_inputs

logger = logging.getLogger(__name__)


class SystemData:
    """
    Container and helper for system input data used in the charging model.


    Parameters
    ----------
    config : dict
        Parsed configuration (see ``config_template.yml``).
    input_fn : callable, optional
        Input source for interactive EV entry, defaults to :func:`input`.


    Attributes
    ----------
    network : NetworkData
        Per-unit conductance and susceptance matrices and slack voltage.
    profiles : ProfileData
        Per-unit baseline load and solar matrices, ``nbus x T``.
    fleet : EVFleet
        EV parameters.
    horizon : TimeHorizon
        Number of periods and period length.
    settings : ProblemSettings
        Settings passed to every model build.
    """

    def __init__(self, config: dict, input_fn=input):
        self.config = config
        self.input_fn = input_fn
        self.data_path = config.get('data_path', 'data')
        self.csv_header = bool(config.get('csv_header', False))
        self.Vpu = float(config.get('Vpu', 12660.0))
        self.Spu = float(config.get('Spu', 100e6))
        self.V_source = float(config.get('V_source', self.Vpu))
        self.nbus = config.get('nbus')
        self.T = config.get('T', 24)
        self.dt = config.get('dt', 1.0)

        self.network = None
        self.profiles = None
        self.fleet = None
        self.horizon = None
        self.settings = None

    def _path(self, key, default):
        return os.path.join(self.data_path, self.config.get(key, default))

    def get_network_data(self):
        """
        Load the admittance matrix and convert it to per unit.

        Returns
        -------
        NetworkData
            Stored in ``self.network``.
        """
        Ybus = dh.load_admittance_matrix(self._path('admittance_file', 'InitialAdmittanceMatrix.csv'),
                                         nbus=self.nbus, header=self.csv_header)
        self.network = NetworkData.from_admittance(Ybus, self.Vpu, self.Spu, self.V_source, nbus=self.nbus)
        logger.info('Network with %d buses loaded', self.network.nbus)
        return self.network

    def get_ev_data(self):
        """
        Build the EV fleet from the ``ev`` section of the configuration or,
        with ``interactive_ev_input`` set, from prompts.

        Interactive entry also sets the horizon ``T`` and ``dt``.
        """
        if self.config.get('interactive_ev_input', False):
            nbus = self.network.nbus if self.network is not None else self.nbus
            params = h.collect_ev_parameters(nbus, input_fn=self.input_fn)
            self.T = params['T']
            self.dt = params['dt']
            ev = params['ev']
        else:
            ev = self.config.get('ev') or {'n': 0}
            ev = {'n': 0, 'eta': 1.0, 'E': 1.0, 'S_ev': 1.0, 'SOC_initial': [], 'SOC_target': [],
                  'arrival_time': [], 'departure_time': [], 'ev_bus': [], **ev}
        self.fleet = EVFleet.from_parameters(**ev)
        logger.info('%d EVs loaded', len(self.fleet))
        return self.fleet

    def get_horizon(self):
        self.horizon = TimeHorizon(T=int(self.T), dt=float(self.dt))
        return self.horizon

    def get_profile_data(self):
        """
        Load the baseline load and PV matrices and convert them to per unit.

        With ``build_profiles`` set the matrices are built from the
        per-customer peak file and the normalized curves workbook and, if
        ``export_matrices`` is set, written back as headerless CSV. Otherwise
        the prepared ``Pload``, ``Qload`` and ``PV`` matrices are read.

        Matrices with more columns than the horizon are cut to the first
        ``T`` periods.
        """
        if self.config.get('build_profiles', False):
            power_data = dh.load_power_data(self._path('power_data_file', 'powerdata_PV.txt'))
            load_shape, pv_shape = dh.load_normalized_curves(
                self._path('normalized_curves_file', 'Normalized_curves.xlsx'),
                load_column=self.config.get('load_curve_column', 0),
                pv_column=self.config.get('pv_curve_column', 0))
            Pload, Qload, PV = dh.build_profile_matrices(power_data, load_shape, pv_shape)
            if self.config.get('export_matrices', False):
                dh.write_matrix_csv(Pload, self._path('pload_file', 'Pload_matrix.csv'))
                dh.write_matrix_csv(Qload, self._path('qload_file', 'Qload_matrix.csv'))
                dh.write_matrix_csv(PV, self._path('pv_file', 'PV_matrix.csv'))
                logger.info('Profile matrices written to %s', self.data_path)
        else:
            Pload = dh.load_matrix_csv(self._path('pload_file', 'Pload_matrix.csv'), header=self.csv_header)
            Qload = dh.load_matrix_csv(self._path('qload_file', 'Qload_matrix.csv'), header=self.csv_header)
            PV = dh.load_matrix_csv(self._path('pv_file', 'PV_matrix.csv'), header=self.csv_header)

        T = self.horizon.T if self.horizon is not None else int(self.T)
        if Pload.shape[1] > T:
            logger.info('Profile matrices cover %d periods, using the first %d', Pload.shape[1], T)
            Pload, Qload, PV = Pload[:, :T], Qload[:, :T], PV[:, :T]

        self.profiles = ProfileData.from_kw(Pload, Qload, PV, self.Spu)
        return self.profiles

    def get_settings(self):
        self.settings = ProblemSettings(horizon=self.horizon,
                                        v_min=float(self.config.get('v_min', 0.95)),
                                        v_max=float(self.config.get('v_max', 1.05)),
                                        s_app_factor=float(self.config.get('s_app_factor', 1.1)))
        return self.settings

    def get_data(self):
        """
        Load all input data in dependency order: network, EVs, horizon,
        profiles, settings.

        The fleet and the profile matrices are then checked against the
        network size and the horizon; a mismatch raises
        :class:`ConfigurationError`.
        """
        start_time = time.time()
        self.get_network_data()
        self.get_ev_data()
        self.get_horizon()
        self.get_profile_data()
        self.get_settings()
        check_inputs(self.network, self.profiles, self.fleet, self.horizon)
        logger.info('Data loaded in %.3f seconds', time.time() - start_time)
