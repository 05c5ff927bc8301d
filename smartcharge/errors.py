"""
Exception types raised by the EV smart-charging model.

Configuration and parse errors are detected before any model is built and
abort the run immediately. Solver failures are surfaced unchanged to the
caller; nothing in this package retries or relaxes a failed solve.
"""


class ConfigurationError(ValueError):
    """Inconsistent input data (dimension mismatch, bad bus index, bad time window)."""


class ParseError(ValueError):
    """Malformed numeric or complex input text."""


class SolverFailure(RuntimeError):
    """
    The external solver did not return a usable solution.

    Parameters
    ----------
    mode : int
        Charging mode code that was being solved.
    reason : str
        Raw failure reason (termination condition or exception message).
    stage : str, optional
        Sub-problem that failed, e.g. ``'scheduling EV 3'`` or ``'power flow'``.
    status : str, optional
        Solver status reported by Pyomo.
    termination_condition : str, optional
        Termination condition reported by Pyomo.
    """

    def __init__(self, mode, reason, stage=None, status=None, termination_condition=None):
        self.mode = mode
        self.reason = reason
        self.stage = stage
        self.status = status
        self.termination_condition = termination_condition
        where = f" ({stage})" if stage else ""
        super().__init__(f"Mode {mode}{where} failed: {reason}")


class SolveCancelled(SolverFailure):
    """The cancellation token was set before a solve was started."""
