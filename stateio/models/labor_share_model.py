"""
Labor Share Reconciliation Model

State labor/capital splits of value added are estimated from BEA GSP
components, which are noisy and sometimes negative. This module finds the
labor shares closest to those estimates that reproduce the national split of
value added, by solving the weighted least-squares problem

    minimize   sum  |gdp_r,s,t| * (L_r,s,t / l_r,s,t - 1)^2
    L, K       r,s,t

    subject to:
    sum_r rs_r,s,t * L_r,s,t = lab_s,t / (lab_s,t + cap_s,t)    for all s, t
    sum_r rs_r,s,t * K_r,s,t = cap_s,t / (lab_s,t + cap_s,t)    for all s, t
    L_r,s,t + K_r,s,t = 1                                      for all (r,s,t) in rs
    L_r,s,t >= 0.25 * lnat_s,t,  K_r,s,t >= 0.25 * knat_s,t
    L_r,s,t = K_r,s,t = 0                                      for all (r,s,t) not in rs

Where:
- l_r,s,t: cleaned labor share estimate for state r, sector s, year t
- rs_r,s,t: state share of sector GDP
- lab, cap: national labor and capital demand
- lnat, knat: national labor and capital shares

Two interchangeable backends solve it:

ipopt
    Pyomo ConcreteModel over every (year, sector, state) cell, solved with
    Ipopt as one problem.
scipy
    Constraints only couple states within a (sector, year) block, so each
    block is solved independently with SLSQP.

Functions:
---------
build_labor_share_model(problem)
    Build the Pyomo model.
solve_labor_share_model(model, ...)
    Solve it with Ipopt and check the termination condition.
extract_labor_shares(model, problem)
    Read solved shares back into a DataFrame.
solve_labor_shares_scipy(problem, ...)
    Block-wise SLSQP solve.
solve_labor_shares(problem, backend, ...)
    Dispatch to a backend.
"""

import time

import numpy as np
import pandas as pd
import pyomo.environ as pyo
from pyomo.opt import SolverFactory
from scipy.optimize import minimize

from stateio.configs import (
    setup_logger,
    IPOPT_EXEC,
    IPOPT_OPTIONS,
    LABOR_SHARE_SOLVER,
    LOWER_BOUND_FRACTION,
)
from stateio.models.exceptions import SolverConvergenceError

logger = setup_logger("LaborShareModel")

BACKENDS = ("ipopt", "scipy")
RESULT_COLUMNS = ["year", "region", "col", "labor_share", "capital_share"]


class LaborShareProblem:
    """
    Inputs of the labor share reconciliation.

    Parameters
    ----------
    cells : pd.DataFrame
        One row per (year, col, region) cell present in the GDP region shares,
        with columns region_share, estimate (cleaned labor share), weight
        (|gdp|), labor_nat and capital_nat (national shares).
    targets : pd.DataFrame
        One row per (year, col) with labor_nat and capital_nat.
    universe : pd.DataFrame
        Every (year, col, region) combination; cells outside ``cells`` are
        fixed at zero.
    lower_bound_fraction : float
        Fraction of the national share used as a lower bound.
    """

    def __init__(self, cells, targets, universe=None, lower_bound_fraction=LOWER_BOUND_FRACTION):
        self.cells = cells.sort_values(["year", "col", "region"]).reset_index(drop=True)
        self.targets = targets.sort_values(["year", "col"]).reset_index(drop=True)
        if universe is None:
            universe = self.cells[["year", "col", "region"]]
        self.universe = universe.drop_duplicates().reset_index(drop=True)
        self.lower_bound_fraction = lower_bound_fraction

        self.cells["lower"] = lower_bound_fraction * self.cells["labor_nat"]
        self.cells["upper"] = 1 - lower_bound_fraction * self.cells["capital_nat"]

    def __len__(self):
        return len(self.cells)

    def blocks(self):
        """Cells grouped by (year, col) with their national targets."""
        targets = self.targets.set_index(["year", "col"])
        for (year, col), block in self.cells.groupby(["year", "col"], sort=True):
            if (year, col) not in targets.index:
                continue
            yield year, col, block, targets.loc[(year, col)]


def _cell_keys(frame):
    return list(zip(frame["year"].tolist(), frame["col"].tolist(), frame["region"].tolist()))


def build_labor_share_model(problem: LaborShareProblem):
    """
    Build a Pyomo model for the labor share reconciliation.

    Parameters:
    -----------
    problem : LaborShareProblem
        Cleaned estimates, national targets and region shares

    Returns:
    --------
    m : pyo.ConcreteModel
        Model ready to be solved
    """
    cells = problem.cells
    keys = _cell_keys(cells)
    estimate = dict(zip(keys, cells["estimate"].tolist()))
    region_share = dict(zip(keys, cells["region_share"].tolist()))
    weight = dict(zip(keys, cells["weight"].tolist()))
    lower_l = dict(zip(keys, (problem.lower_bound_fraction * cells["labor_nat"]).tolist()))
    lower_k = dict(zip(keys, (problem.lower_bound_fraction * cells["capital_nat"]).tolist()))

    targets = problem.targets
    blocks = list(zip(targets["year"].tolist(), targets["col"].tolist()))
    labor_target = dict(zip(blocks, targets["labor_nat"].tolist()))
    capital_target = dict(zip(blocks, targets["capital_nat"].tolist()))

    members = {}
    for yr, s, r in keys:
        members.setdefault((yr, s), []).append((yr, s, r))

    m = pyo.ConcreteModel()
    m.T = pyo.Set(initialize=_cell_keys(problem.universe), dimen=3)
    m.B = pyo.Set(initialize=blocks, dimen=2)
    m.C = pyo.Set(initialize=keys, dimen=3)

    m.L_SHR = pyo.Var(
        m.T, domain=pyo.NonNegativeReals, initialize=lambda _, *c: estimate.get(c, 0.0)
    )
    m.K_SHR = pyo.Var(
        m.T,
        domain=pyo.NonNegativeReals,
        initialize=lambda _, *c: 1 - estimate[c] if c in estimate else 0.0,
    )

    for c in m.T:
        if c in estimate:
            m.L_SHR[c].setlb(lower_l[c])
            m.K_SHR[c].setlb(lower_k[c])
        else:
            m.L_SHR[c].fix(0.0)
            m.K_SHR[c].fix(0.0)

    def labor_rule(_, yr, s):
        if (yr, s) not in members:
            return pyo.Constraint.Skip
        cs = members[(yr, s)]
        return sum(region_share[c] * m.L_SHR[c] for c in cs) == labor_target[(yr, s)]
    m.lshrdef = pyo.Constraint(m.B, rule=labor_rule)

    def capital_rule(_, yr, s):
        if (yr, s) not in members:
            return pyo.Constraint.Skip
        cs = members[(yr, s)]
        return sum(region_share[c] * m.K_SHR[c] for c in cs) == capital_target[(yr, s)]
    m.kshrdef = pyo.Constraint(m.B, rule=capital_rule)

    def share_rule(_, yr, s, r):
        return m.L_SHR[yr, s, r] + m.K_SHR[yr, s, r] == 1
    m.shrconstr = pyo.Constraint(m.C, rule=share_rule)

    # Cells with zero GDP or a zero estimate carry no information
    weighted = [c for c in keys if weight[c] > 0 and estimate[c] > 0]

    def obj_rule(_):
        return sum(weight[c] * (m.L_SHR[c] / estimate[c] - 1) ** 2 for c in weighted)
    m.obj = pyo.Objective(rule=obj_rule, sense=pyo.minimize)

    return m


def solve_labor_share_model(model, solver="ipopt", options=None, tee=False):
    """
    Solve the labor share model and require an optimal termination.

    Raises
    ------
    SolverConvergenceError
        If the solver stops anywhere other than a locally optimal point.
    """
    opt = SolverFactory(solver, executable=IPOPT_EXEC) if solver == "ipopt" else SolverFactory(solver)
    if not opt.available(exception_flag=False):
        raise SolverConvergenceError("unavailable", f"solver '{solver}' not found")

    for option, value in (options or IPOPT_OPTIONS).items():
        opt.options[option] = value

    results = opt.solve(model, tee=tee, load_solutions=False)
    termination = results.solver.termination_condition
    logger.info(f"Solver status: {results.solver.status}")
    logger.info(f"Termination condition: {termination}")

    if not pyo.check_optimal_termination(results):
        raise SolverConvergenceError(str(termination))

    model.solutions.load_from(results)
    return results


def extract_labor_shares(model, problem):
    """Solved shares for every cell present in the region shares."""
    records = []
    for yr, s, r in problem.cells[["year", "col", "region"]].itertuples(index=False, name=None):
        records.append(
            {
                "year": yr,
                "region": r,
                "col": s,
                "labor_share": pyo.value(model.L_SHR[yr, s, r]),
                "capital_share": pyo.value(model.K_SHR[yr, s, r]),
            }
        )
    return pd.DataFrame(records, columns=RESULT_COLUMNS)


def _solve_block(block, labor_target, max_iter, tolerance):
    rs = block["region_share"].to_numpy(dtype=float)
    estimate = block["estimate"].to_numpy(dtype=float)
    lower = block["lower"].to_numpy(dtype=float)
    upper = block["upper"].to_numpy(dtype=float)

    usable = (block["weight"].to_numpy(dtype=float) > 0) & (estimate > 0)
    weight = np.where(usable, block["weight"].to_numpy(dtype=float), 0.0)
    if weight.sum() == 0:
        return np.full(len(block), labor_target)
    weight = weight / weight.sum()
    scale = np.where(usable, estimate, 1.0)

    def objective(x):
        dev = x / scale - 1
        return float(np.sum(weight * dev**2))

    def gradient(x):
        return 2 * weight * (x / scale - 1) / scale

    x0 = np.clip(np.where(usable, estimate, labor_target), lower, upper)
    res = minimize(
        objective,
        x0,
        jac=gradient,
        method="SLSQP",
        bounds=list(zip(lower, upper)),
        constraints=[
            {
                "type": "eq",
                "fun": lambda x: float(rs @ x - labor_target),
                "jac": lambda x: rs,
            }
        ],
        options={"maxiter": max_iter, "ftol": tolerance},
    )
    if not res.success:
        raise SolverConvergenceError(res.status, res.message)
    return np.clip(res.x, lower, upper)


def solve_labor_shares_scipy(
    problem,
    max_iter=IPOPT_OPTIONS["max_iter"],
    tolerance=IPOPT_OPTIONS["tol"],
    time_limit=IPOPT_OPTIONS["max_cpu_time"],
):
    """
    Solve each (sector, year) block with SLSQP.

    ``max_iter`` and ``tolerance`` apply per block, ``time_limit`` (seconds)
    to the whole solve and is checked before each block.
    """
    start = time.perf_counter()
    frames = []
    for year, col, block, target in problem.blocks():
        elapsed = time.perf_counter() - start
        if time_limit is not None and elapsed >= time_limit:
            raise SolverConvergenceError(
                "time_limit", f"{elapsed:.1f}s spent after {len(frames)} blocks, limit {time_limit:g}s"
            )
        labor = _solve_block(block, float(target["labor_nat"]), max_iter, tolerance)
        frames.append(
            pd.DataFrame(
                {
                    "year": year,
                    "region": block["region"].to_numpy(),
                    "col": col,
                    "labor_share": labor,
                    "capital_share": 1 - labor,
                }
            )
        )
    logger.info(f"Solved {len(frames)} sector-year blocks with SLSQP")
    if not frames:
        return pd.DataFrame(columns=RESULT_COLUMNS)
    return pd.concat(frames, ignore_index=True)[RESULT_COLUMNS]


def solve_labor_shares(
    problem,
    backend=LABOR_SHARE_SOLVER,
    max_iter=IPOPT_OPTIONS["max_iter"],
    time_limit=IPOPT_OPTIONS["max_cpu_time"],
    tolerance=IPOPT_OPTIONS["tol"],
    tee=False,
):
    """
    Solve the reconciliation with the chosen backend.

    Returns
    -------
    pd.DataFrame
        Columns year, region, col, labor_share, capital_share.
    """
    if backend not in BACKENDS:
        raise ValueError(f"Unknown labor share backend: {backend}")

    logger.info(f"Solving labor shares for {len(problem):,} cells with {backend}")

    if backend == "scipy":
        return solve_labor_shares_scipy(
            problem, max_iter=max_iter, tolerance=tolerance, time_limit=time_limit
        )

    options = dict(IPOPT_OPTIONS)
    options.update({"max_iter": max_iter, "max_cpu_time": time_limit, "tol": tolerance})
    model = build_labor_share_model(problem)
    solve_labor_share_model(model, solver="ipopt", options=options, tee=tee)
    return extract_labor_shares(model, problem)
