"""
Thin adapter around Pyomo's solver interface.

One call to :meth:`SolverAdapter.solve` is one blocking solve. There is no
retry, warm start or relaxation; a solve that does not end optimal raises
:class:`~smartcharge.errors.SolverFailure` and leaves the model's variable
values untouched.
"""
import logging
import time

from pyomo.common.errors import ApplicationError
from pyomo.environ import SolverFactory
from pyomo.opt import SolverStatus, TerminationCondition

from smartcharge.errors import SolverFailure, SolveCancelled

logger = logging.getLogger(__name__)

ACCEPTED_CONDITIONS = (TerminationCondition.optimal, TerminationCondition.locallyOptimal)


class SolverAdapter:
    """
    Solve Pyomo models with an external NLP solver.

    Parameters
    ----------
    name : str, optional
        Solver name known to ``SolverFactory``. Defaults to ``'ipopt'``.
    time_limit : float, optional
        Time limit per solve in seconds. Passed as ``max_cpu_time`` to Ipopt,
        which counts CPU seconds, and as ``timelimit`` to other solvers.
    max_iter : int, optional
        Iteration limit passed to the solver.
    tol : float, optional
        Convergence tolerance passed to the solver.
    tee : bool, optional
        Stream the solver log to stdout.
    options : dict, optional
        Further solver options, passed through unchanged.
    """

    def __init__(self, name='ipopt', time_limit=None, max_iter=None, tol=None, tee=False, options=None):
        self.name = name
        self.time_limit = time_limit
        self.max_iter = max_iter
        self.tol = tol
        self.tee = tee
        self.options = dict(options or {})

    @classmethod
    def from_config(cls, config: dict):
        """Create an adapter from the ``solver`` section of ``config.yml``."""
        config = dict(config or {})
        return cls(name=config.get('name', 'ipopt'),
                   time_limit=config.get('time_limit'),
                   max_iter=config.get('max_iter'),
                   tol=config.get('tol'),
                   tee=bool(config.get('tee', False)),
                   options=config.get('options'))

    def solver_options(self) -> dict:
        options = {}
        if self.time_limit is not None:
            options['max_cpu_time' if self.name == 'ipopt' else 'timelimit'] = self.time_limit
        if self.max_iter is not None:
            options['max_iter'] = self.max_iter
        if self.tol is not None:
            options['tol'] = self.tol
        options.update(self.options)
        return options

    def solve(self, model, mode, stage=None, cancel_event=None):
        """
        Solve ``model`` and load the primal solution into it.

        Parameters
        ----------
        model : pyomo.environ.ConcreteModel
            Model to solve.
        mode : int
            Charging mode, reported in failures.
        stage : str, optional
            Sub-problem label, reported in failures and log messages.
        cancel_event : threading.Event, optional
            If set before the solve starts, :class:`SolveCancelled` is raised.

        Returns
        -------
        pyomo.opt.SolverResults
            Results of the successful solve.

        Raises
        ------
        SolverFailure
            If the solver is unavailable, errors out, or terminates with
            anything other than an (locally) optimal solution.
        """
        label = stage or model.name
        if cancel_event is not None and cancel_event.is_set():
            raise SolveCancelled(mode, 'cancelled before solve', stage=stage)

        solver = SolverFactory(self.name)
        if not solver.available(exception_flag=False):
            raise SolverFailure(mode, f"solver '{self.name}' is not available", stage=stage)
        for key, val in self.solver_options().items():
            solver.options[key] = val

        start_time = time.time()
        logger.info('Solving %s with %s', label, self.name)
        try:
            results = solver.solve(model, tee=self.tee, load_solutions=False)
        except (ApplicationError, RuntimeError, ValueError) as err:
            logger.error('Solver error in mode %d (%s): %s', mode, label, err)
            raise SolverFailure(mode, str(err), stage=stage) from err

        status = results.solver.status
        condition = results.solver.termination_condition
        if status == SolverStatus.ok and condition in ACCEPTED_CONDITIONS:
            model.solutions.load_from(results)
            logger.info('%s solved in %.3f seconds (%s)', label, time.time() - start_time, condition)
            return results

        logger.error('Solver did not find an optimal solution for mode %d (%s). Status: %s, termination: %s',
                     mode, label, status, condition)
        raise SolverFailure(mode, str(condition), stage=stage, status=str(status),
                            termination_condition=str(condition))
