"""
This module provides utility functions for configuration handling and
interactive parameter collection for the EV smart-charging model.

Key Features
------------
- Safely copy and load YAML configuration files for flexible simulation setup.
- Prompt a user for bounded integers, floats and fixed-length vectors.
- Prompt for the charging mode and collect a complete EV parameter set.

Usage
-----
The prompts never run inside the model builders. They are used by the driver
script to produce the same parameter dictionary that ``config.yml`` provides.
All prompts take an ``input_fn`` argument so that a different input source
can be injected.
"""

import os

import yaml

from smartcharge.modes import ChargingMode


def copy_default_config(config_path="config.yml", default_config_path="config_template.yml"):
    """
    Copy a default configuration file to a specified path if it does not exist.

    Parameters
    ----------
    config_path : str, optional
        Target path for the configuration file. Defaults to "config.yml".
    default_config_path : str, optional
        Path to the default configuration template. Defaults to "config_template.yml".

    Returns
    -------
    bool
        True if the template was copied, False if the configuration already existed.
    """

    if not os.path.exists(config_path):
        with open(default_config_path, 'r') as f:
            config = f.read()
        with open(config_path, 'w') as f:
            f.write(config)
        print(f"Copied default configuration to {config_path}. Enter path settings in the file, then rerun.")
        return True

    print(f"Configuration file already exists at {config_path}.")
    return False


def load_config(config_path="config.yml") -> dict:
    """
    Load a YAML configuration file and return its contents as a dictionary.

    Parameters
    ----------
    config_path : str, optional
        Path to the YAML configuration file. Defaults to "config.yml".

    Returns
    -------
    dict
        Contents of the YAML configuration file.

    Raises
    ------
    FileNotFoundError
        If the specified configuration file does not exist.
    yaml.YAMLError
        If there is an error parsing the YAML file.
    """
    with open(config_path, 'r') as f:
        config = yaml.safe_load(f)
    return config


def _in_bounds(x, lower, upper) -> bool:
    return (lower is None or x >= lower) and (upper is None or x <= upper)


def _bounds_text(lower, upper) -> str:
    if lower is None and upper is None:
        return ""
    return f" [{'-inf' if lower is None else lower}, {'inf' if upper is None else upper}]"


def prompt_number(msg, cast, lower=None, upper=None, input_fn=input):
    """
    Ask until the user enters a number of type ``cast`` within the bounds.

    Parameters
    ----------
    msg : str
        Prompt text.
    cast : type
        ``int`` or ``float``.
    lower, upper : number, optional
        Inclusive bounds.
    input_fn : callable, optional
        Input source, defaults to :func:`input`.
    """
    while True:
        text = input_fn(f"{msg}{_bounds_text(lower, upper)}: ").strip()
        try:
            x = cast(text)
        except ValueError:
            print(f"Please enter a valid {cast.__name__}.")
            continue
        if _in_bounds(x, lower, upper):
            return x
        print(f"Value must be within{_bounds_text(lower, upper)}.")


def prompt_int(msg, lower=None, upper=None, input_fn=input) -> int:
    return prompt_number(msg, int, lower, upper, input_fn)


def prompt_float(msg, lower=None, upper=None, input_fn=input) -> float:
    return prompt_number(msg, float, lower, upper, input_fn)


def prompt_vector(msg, n, cast=float, lower=None, upper=None, input_fn=input) -> list:
    """
    Ask until the user enters exactly ``n`` space-separated values.

    Every token must convert with ``cast`` and lie within the bounds.
    """
    while True:
        tokens = input_fn(f"{msg} ({n} values separated by spaces){_bounds_text(lower, upper)}: ").split()
        if len(tokens) != n:
            print(f"Expected exactly {n} values, got {len(tokens)}.")
            continue
        try:
            values = [cast(token) for token in tokens]
        except ValueError:
            print(f"All values must be valid {cast.__name__} numbers.")
            continue
        if all(_in_bounds(x, lower, upper) for x in values):
            return values
        print(f"All values must be within{_bounds_text(lower, upper)}.")


def prompt_mode(input_fn=input) -> ChargingMode:
    """
    Ask for the charging mode until one of 1, 2, 3, 4 or 5 is entered.

    There is no default; empty or invalid input repeats the question.
    """
    while True:
        print("\nSelect charging type:")
        for mode in ChargingMode:
            print(f"  {int(mode)}: {mode.description}")
        text = input_fn("Enter 1/2/3/4/5: ").strip()
        if text.isdigit() and int(text) in {int(m) for m in ChargingMode}:
            return ChargingMode(int(text))
        print("Please enter 1, 2, 3, 4, or 5 (no default).")


def collect_ev_parameters(nbus, input_fn=input) -> dict:
    """
    Interactively collect the horizon and EV fleet parameters.

    Parameters
    ----------
    nbus : int
        Number of buses; host bus indices are bounded by it.
    input_fn : callable, optional
        Input source, defaults to :func:`input`.

    Returns
    -------
    dict
        Keys ``T``, ``dt`` and ``ev`` where ``ev`` has the same layout as the
        ``ev`` section of ``config.yml``.
    """
    T = prompt_int("Number of periods T", lower=2, input_fn=input_fn)
    n = prompt_int("Number of EVs", lower=0, input_fn=input_fn)
    eta = prompt_float("Charging efficiency eta", lower=0.01, upper=1.0, input_fn=input_fn)
    E = prompt_float("Battery capacity E [kWh]", lower=0.1, input_fn=input_fn)
    dt = prompt_float("Period length dt [h]", lower=0.01, input_fn=input_fn)
    S_ev = prompt_float("Rated charging power S_ev [kW]", lower=0.1, input_fn=input_fn)
    ev = {
        'n': n,
        'eta': eta,
        'E': E,
        'S_ev': S_ev,
        'SOC_initial': prompt_vector("Initial SOC per EV", n, float, 0.0, 1.0, input_fn),
        'SOC_target': prompt_vector("Target SOC per EV", n, float, 0.0, 1.0, input_fn),
        'arrival_time': prompt_vector("Arrival period per EV", n, int, 1, T, input_fn),
        'departure_time': prompt_vector("Departure period per EV", n, int, 1, T, input_fn),
        'ev_bus': prompt_vector("Host bus per EV", n, int, 1, nbus, input_fn),
    }
    return {'T': T, 'dt': dt, 'ev': ev}
