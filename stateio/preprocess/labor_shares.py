"""
Labor shares of value added by state, sector and year.

BEA gross operating surplus has unavoidable negative values for some
state-sector-years, so labor / (labor + capital) can't be used directly.
Instead:

1. GDP implied by the GSP components (compensation + surplus + taxes +
   subsidies) is compared to reported GDP; the difference is attributed to
   capital.
2. National labor/capital shares per (sector, year) come from the national
   value added.
3. Raw state shares are rescaled so the GSP-implied national split matches
   the national table, then any share that is missing, negative, or more than
   0.75 from the national share is replaced by the national share.
4. The cleaned shares seed the reconciliation in models.labor_share_model.
"""

import numpy as np
import pandas as pd

from stateio.configs import (
    setup_logger,
    get_solver_config,
    OUTLIER_THRESHOLD,
    LOWER_BOUND_FRACTION,
)
from stateio.models.labor_share_model import LaborShareProblem, solve_labor_shares
from stateio.preprocess.shares import region_shares

logger = setup_logger("LaborShares")


def compute_gdp_from_gsp(labor, capital, tax, subsidy):
    """GDP implied by the GSP income components, per (year, region, naics)."""
    parts = pd.concat([labor, capital, tax, subsidy], ignore_index=True)
    return parts.groupby(["year", "region", "naics"], as_index=False)["value"].sum()


def gdp_difference(gdp, labor, capital, tax, subsidy):
    """Reported minus calculated GDP, labelled as capital."""
    calculated = compute_gdp_from_gsp(labor, capital, tax, subsidy)
    reported = gdp.groupby(["year", "region", "naics"], as_index=False)["value"].sum()
    diff = calculated.merge(reported, on=["year", "region", "naics"], suffixes=("_calc", "_report"))
    diff["value"] = diff["value_report"] - diff["value_calc"]
    diff["name"] = "capital"
    return diff[["year", "region", "naics", "value", "name"]]


def national_value_added_shares(national):
    """Labor and capital shares of national value added per (col, year)."""
    va = national.table("Value_Added").groupby(["col", "year", "parameter"], as_index=False)["value"].sum()
    va["share"] = va["value"] / va.groupby(["col", "year"])["value"].transform("sum")
    wide = va.pivot_table(index=["col", "year"], columns="parameter", values="share").reset_index()
    wide.columns.name = None
    wide = wide.rename(columns={"labor_demand": "labor_nat", "capital_demand": "capital_nat"})
    return wide[["col", "year", "labor_nat", "capital_nat"]].dropna()


def state_component_shares(gdp, labor, capital, tax, subsidy):
    """
    GSP labor and capital with the GDP discrepancy folded into capital.

    Returns (year, region, col, name, value) with name in {labor, capital}.
    """
    diff = gdp_difference(gdp, labor, capital, tax, subsidy)
    parts = pd.concat(
        [
            diff,
            labor.assign(name="labor"),
            capital.assign(name="capital"),
        ],
        ignore_index=True,
    )
    parts = parts.groupby(["year", "region", "naics", "name"], as_index=False)["value"].sum()
    return parts.rename(columns={"naics": "col"})


def labor_share_estimates(national, raw_data, outlier_threshold=OUTLIER_THRESHOLD):
    """
    Cleaned labor share estimate per (year, region, col).

    Returns
    -------
    pd.DataFrame
        Columns year, region, col, estimate, labor_nat, capital_nat.
    """
    components = state_component_shares(
        raw_data["gdp"], raw_data["labor"], raw_data["capital"], raw_data["tax"], raw_data["subsidy"]
    )
    nat = national_value_added_shares(national)

    # National split implied by GSP, and the correction that maps it onto the national table
    gsp_nat = components.groupby(["year", "col", "name"], as_index=False)["value"].sum()
    gsp_nat = gsp_nat.pivot_table(index=["year", "col"], columns="name", values="value").reset_index()
    gsp_nat.columns.name = None
    gsp_nat["gsp_labor"] = gsp_nat["labor"] / (gsp_nat["labor"] + gsp_nat["capital"])
    delta = gsp_nat[["year", "col", "gsp_labor"]].merge(nat, on=["year", "col"])
    delta["delta"] = delta["labor_nat"] / delta["gsp_labor"]

    state = components.pivot_table(index=["year", "region", "col"], columns="name", values="value").reset_index()
    state.columns.name = None
    for name in ("labor", "capital"):
        if name not in state.columns:
            state[name] = np.nan
    with np.errstate(divide="ignore", invalid="ignore"):
        state["raw"] = state["labor"] / (state["labor"] + state["capital"])
    state = state.merge(delta[["year", "col", "delta"]], on=["year", "col"], how="left")
    state["raw"] = state["raw"] * state["delta"]

    regions = components[["region"]].drop_duplicates()
    estimates = regions.merge(nat, how="cross").merge(
        state[["year", "region", "col", "raw"]], on=["year", "region", "col"], how="left"
    )

    raw = estimates["raw"]
    n = estimates["labor_nat"]
    reject = raw.isna() | ~np.isfinite(raw) | (raw < 0) | ((raw - n).abs() > outlier_threshold)
    estimates["estimate"] = np.where(reject, n, raw)
    logger.info(
        f"Labor share estimates: {int(reject.sum()):,} of {len(estimates):,} replaced by national shares"
    )
    return estimates[["year", "region", "col", "estimate", "labor_nat", "capital_nat"]]


def build_labor_share_problem(national, raw_data, outlier_threshold=OUTLIER_THRESHOLD, lower_bound_fraction=LOWER_BOUND_FRACTION):
    """Assemble the reconciliation inputs for the national sectors and years."""
    sectors = national.element_names("sector")
    years = national.years

    gdp = raw_data["gdp"]
    shares = region_shares(gdp)
    shares = shares[shares["naics"].isin(sectors) & shares["year"].isin(years)]
    shares = shares.rename(columns={"naics": "col", "share": "region_share"})

    weights = gdp.groupby(["year", "region", "naics"], as_index=False)["value"].sum()
    weights = weights.rename(columns={"naics": "col", "value": "weight"})
    weights["weight"] = weights["weight"].abs()

    estimates = labor_share_estimates(national, raw_data, outlier_threshold)
    nat = national_value_added_shares(national)

    cells = shares[["year", "col", "region", "region_share"]]
    cells = cells.merge(nat, on=["year", "col"])
    cells = cells.merge(
        estimates[["year", "region", "col", "estimate"]], on=["year", "region", "col"], how="left"
    )
    cells["estimate"] = cells["estimate"].fillna(cells["labor_nat"])
    cells = cells.merge(weights, on=["year", "region", "col"], how="left").fillna({"weight": 0.0})

    targets = nat[nat["year"].isin(years) & nat["col"].isin(cells["col"].unique())]

    regions = sorted(gdp["region"].unique())
    universe = pd.MultiIndex.from_product(
        [years, sorted(targets["col"].unique()), regions], names=["year", "col", "region"]
    ).to_frame(index=False)

    return LaborShareProblem(cells, targets, universe, lower_bound_fraction)


def labor_shares(national, raw_data, solver=None, **solver_options):
    """
    Solved labor shares per (year, region, col).

    Parameters
    ----------
    national : AccountTable
        National table.
    raw_data : dict
        Needs gdp, labor, capital, tax and subsidy tables.
    solver : str, optional
        Backend name ("ipopt" or "scipy"); the configured default otherwise.
    **solver_options
        max_iter, time_limit, tolerance overrides.

    Returns
    -------
    pd.DataFrame
        Columns year, region, col, labor_share, capital_share.
    """
    config = get_solver_config()
    backend = config.pop("backend")
    if solver is not None:
        backend = solver
    config.update(solver_options)

    problem = build_labor_share_problem(national, raw_data)
    return solve_labor_shares(problem, backend=backend, **config)
