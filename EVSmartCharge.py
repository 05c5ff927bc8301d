import argparse
import logging
import os
import sys
import time

from smartcharge import SystemData as sd
from smartcharge import data_helper as dh
from smartcharge import helper_functions as h
from smartcharge.errors import ConfigurationError, ParseError, SolverFailure
from smartcharge.modes import ChargingMode
from smartcharge.optimization import run_charging_mode
from smartcharge.solver import SolverAdapter


def setup_logger(log_dir="logs", log_name="ev_smart_charge_log.txt"):
    """
    Configure the ``smartcharge`` logger with a file and a console handler.

    All module loggers of the package propagate to it.
    """
    os.makedirs(log_dir, exist_ok=True)
    logger = logging.getLogger('smartcharge')
    logger.setLevel(logging.INFO)
    if logger.handlers:
        return logger

    formatter = logging.Formatter('%(asctime)s - %(levelname)s - %(message)s')

    # File handler
    file_handler = logging.FileHandler(os.path.join(log_dir, log_name), mode='w')
    file_handler.setFormatter(formatter)
    logger.addHandler(file_handler)

    # Stream handler
    stream_handler = logging.StreamHandler()
    stream_handler.setFormatter(formatter)
    logger.addHandler(stream_handler)
    return logger


logger = logging.getLogger('smartcharge.driver')


class EVSmartCharge:
    """
    EV smart-charging study on a radial distribution feeder.

    This class handles the complete workflow: data loading, solving one of
    the five charging modes, exporting and plotting the results.

    Overview
    --------------
    - **Data processing:** load the admittance matrix, load/PV profiles and EV fleet
    - **Solving:** build and solve the Pyomo model(s) of the selected mode with Ipopt
    - **Exporting:** write result tables to a SQLite database
    - **Visualization:** optional plotly figure of SOC, EV power and voltages

    Parameters
    ----------
    config_path : str, optional
        Path to the YAML configuration. Defaults to ``config.yml``.
    input_fn : callable, optional
        Input source for interactive EV entry.
    """

    def __init__(self, config_path="config.yml", input_fn=input):
        config = h.load_config(config_path)
        self.config = config
        self.input_fn = input_fn
        self.output_path = config.get('output_path', 'output')
        self.export_matrices = bool(config.get('export_matrices', False))
        self.solver = SolverAdapter.from_config(config.get('solver'))

        self.system = None
        self.network = None
        self.profiles = None
        self.fleet = None
        self.settings = None
        self.result = None

    def get_data(self):
        """
        Load system data using the SystemData helper and assign it to instance attributes.
        """
        start_time = time.time()
        logger.info('Loading system data')

        self.system = sd.SystemData(self.config, input_fn=self.input_fn)
        self.system.get_data()

        self.network = self.system.network
        self.profiles = self.system.profiles
        self.fleet = self.system.fleet
        self.settings = self.system.settings

        logger.info('Data loaded in %.3f seconds', time.time() - start_time)

    def solve_model(self, mode, cancel_event=None):
        """
        Build and solve the selected charging mode.

        Parameters
        ----------
        mode : ChargingMode or int
            Charging mode 1-5.
        cancel_event : threading.Event, optional
            Cancellation token checked before each solve.

        Returns
        -------
        ChargingResult
            Also stored in ``self.result``.

        Raises
        ------
        SolverFailure
            If any solve fails; ``self.result`` is left unset.
        """
        if self.network is None:
            raise ValueError('Data not loaded yet! Please call get_data() before solving.')
        self.result = None
        result = run_charging_mode(mode, self.network, self.profiles, self.fleet, self.settings, self.solver,
                                   cancel_event=cancel_event)
        self.result = result
        logger.info('Objective value: %s', result.objective)
        return result

    def export_results(self):
        """
        Export the result tables to ``<output_path>/result.sqlite`` and,
        if ``export_matrices`` is set, the per-unit input matrices as CSV.
        """
        if self.result is None:
            raise ValueError('Model not solved yet! Please solve the model before exporting.')

        start_time = time.time()
        dh.results_to_sqlite(self.result, os.path.join(self.output_path, 'result.sqlite'))
        if self.export_matrices:
            dh.write_matrix_csv(self.profiles.base_load, os.path.join(self.output_path, 'BaseLoad_pu.csv'))
            dh.write_matrix_csv(self.profiles.base_qload, os.path.join(self.output_path, 'BaseQLoad_pu.csv'))
            dh.write_matrix_csv(self.profiles.solar, os.path.join(self.output_path, 'Solar_pu.csv'))
        logger.info('Results exported in %.3f seconds', time.time() - start_time)

    def plot_results(self, show=True):
        if self.result is None:
            raise ValueError('Model not solved yet! Please solve the model before plotting.')
        return dh.plot_results(self.result, show=show)


def parse_args(argv=None):
    parser = argparse.ArgumentParser(description='EV smart charging on a radial distribution feeder')
    parser.add_argument('--config', default='config.yml', help='Path to the YAML configuration file')
    parser.add_argument('--mode', type=int, choices=[int(m) for m in ChargingMode],
                        help='Charging mode 1-5; asked interactively if omitted')
    parser.add_argument('--plot', action='store_true', help='Plot the results with plotly')
    return parser.parse_args(argv)


def main(argv=None):
    args = parse_args(argv)

    # Check if there exists a config file, if not copy it from the default config file
    if h.copy_default_config(config_path=args.config, default_config_path="config_template.yml"):
        return 0

    ev_charge = EVSmartCharge(args.config)
    setup_logger(ev_charge.config.get('log_path', 'logs'))
    try:
        ev_charge.get_data()  # Load network, profile and EV data
    except (ConfigurationError, ParseError, OSError) as err:
        logger.error('Invalid input data: %s', err)
        return 2

    mode = ChargingMode(args.mode) if args.mode is not None else h.prompt_mode()
    try:
        ev_charge.solve_model(mode)  # Build and solve the selected mode
    except SolverFailure as err:
        logger.error('Mode %d (%s) failed: %s', err.mode, ChargingMode(err.mode).description, err.reason)
        return 1

    ev_charge.export_results()  # Export the results to a SQLite database
    if args.plot or ev_charge.config.get('plot_results', False):
        ev_charge.plot_results()
    return 0


if __name__ == '__main__':
    sys.exit(main())
