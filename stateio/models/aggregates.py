"""
Aggregate identities and rates over an AccountTable.

Sign convention: every element of the ``Use`` aggregate is stored negative
(intermediate and final demand, exports, reexports, value added, output tax,
margin supply) and every element of ``Supply`` positive (intermediate and
household supply, imports, taxes, duty, margin demand, local and national
demand). Under this convention each identity below sums to zero.

Which parameters feed an identity is plain configuration: each reducer takes
the list of parameter sets to add up, defaulting to the lists defined here.
"""

import pandas as pd

from stateio.configs import setup_logger, BALANCE_TOLERANCE

logger = setup_logger("Aggregates")

ABSORPTION = ["Intermediate_Demand", "Other_Final_Demand"]
TOTAL_SUPPLY = ["Intermediate_Supply", "Household_Supply"]

ZERO_PROFIT = ["Intermediate_Demand", "Intermediate_Supply", "Value_Added", "Output_Tax"]
NATIONAL_ZERO_PROFIT = ZERO_PROFIT + ["Sector_Subsidy"]

NATIONAL_MARKET_CLEARANCE = [
    "Intermediate_Demand",
    "Intermediate_Supply",
    "Final_Demand",
    "Household_Supply",
    "Margin_Supply",
    "Margin_Demand",
    "Import",
    "Tax",
    "Subsidies",
    "Duty",
]

MARGIN_BALANCE = ["Margin_Supply", "Margin_Demand"]

ARMINGTON_BALANCE = ABSORPTION + [
    "Tax",
    "Import",
    "Duty",
    "Margin_Demand",
    "Reexport",
    "Local_Demand",
    "National_Demand",
]

OUTPUT_TAX = ["Output_Tax", "Sector_Subsidy"]
ABSORPTION_TAX = ["Tax", "Subsidies"]


def _reduce(table, parameters, domain_set, key, name):
    frame = table.table(*parameters, domain_set)
    out = frame.groupby(key, as_index=False)["value"].sum()
    out["parameter"] = name
    return out[key + ["parameter", "value"]]


def absorption(table, parameters=ABSORPTION):
    """Intermediate plus other final demand per (row, region, year). Negative."""
    return _reduce(table, parameters, "commodity", ["row", "region", "year"], "absorption")


def total_supply(table, parameters=TOTAL_SUPPLY):
    """Intermediate plus household supply per (row, region, year). Positive."""
    return _reduce(table, parameters, "commodity", ["row", "region", "year"], "total_supply")


def zero_profit(table, parameters=ZERO_PROFIT):
    return _reduce(table, parameters, "sector", ["col", "region", "year"], "zero_profit")


def market_clearance(table, parameters=NATIONAL_MARKET_CLEARANCE):
    return _reduce(
        table, parameters, "commodity", ["row", "region", "year"], "market_clearance"
    )


def margin_balance(table, parameters=MARGIN_BALANCE):
    return _reduce(table, parameters, "margin", ["col", "region", "year"], "margin_balance")


def armington_balance(table, parameters=ARMINGTON_BALANCE):
    """Regional absorption market: demand, taxes, imports and domestic sourcing."""
    return _reduce(
        table, parameters, "commodity", ["row", "region", "year"], "armington_balance"
    )


def output_tax_rate(table, parameters=OUTPUT_TAX):
    """
    Output tax rate inclusive of sector subsidies.

    rate = -(output tax + subsidy) / intermediate supply, per (col, region, year).
    """
    key = ["col", "region", "year"]
    supply = table.table("Intermediate_Supply").groupby(key, as_index=False)["value"].sum()
    tax = table.table(*parameters).groupby(key, as_index=False)["value"].sum()
    rate = supply.merge(tax, on=key, suffixes=("_is", "_ot"))
    rate = rate[rate["value_is"] != 0]
    rate["value"] = -rate["value_ot"] / rate["value_is"]
    rate["parameter"] = "output_tax_rate"
    return rate[key + ["parameter", "value"]]


def absorption_tax_rate(table, parameters=ABSORPTION_TAX):
    """
    Tax rate on absorption inclusive of product subsidies.

    rate = (tax + subsidies) / -absorption, per (row, region, year).
    """
    key = ["row", "region", "year"]
    demand = absorption(table).drop(columns="parameter")
    tax = table.table(*parameters).groupby(key, as_index=False)["value"].sum()
    rate = demand.merge(tax, on=key, suffixes=("_abs", "_tax"))
    rate = rate[rate["value_abs"] != 0]
    rate["value"] = -rate["value_tax"] / rate["value_abs"]
    rate["parameter"] = "tax_rate"
    return rate[key + ["parameter", "value"]]


def import_duty_rate(table):
    """Duty over imports, per (row, region, year)."""
    key = ["row", "region", "year"]
    imports = table.table("Import").groupby(key, as_index=False)["value"].sum()
    duty = table.table("Duty").groupby(key, as_index=False)["value"].sum()
    rate = imports.merge(duty, on=key, suffixes=("_imp", "_duty"))
    rate = rate[rate["value_imp"] != 0]
    rate["value"] = rate["value_duty"] / rate["value_imp"]
    rate["parameter"] = "duty_rate"
    return rate[key + ["parameter", "value"]]


IDENTITIES = {
    "zero_profit": zero_profit,
    "market_clearance": market_clearance,
    "margin_balance": margin_balance,
    "armington_balance": armington_balance,
}

REGIONAL_IDENTITIES = ["zero_profit", "margin_balance", "armington_balance"]
NATIONAL_IDENTITIES = {
    "zero_profit": NATIONAL_ZERO_PROFIT,
    "market_clearance": NATIONAL_MARKET_CLEARANCE,
    "margin_balance": MARGIN_BALANCE,
}


def balance_report(table, identities=None, tolerance=BALANCE_TOLERANCE):
    """
    Maximum absolute imbalance per identity, region and year.

    Parameters
    ----------
    table : AccountTable
        Table to check.
    identities : list or dict, optional
        Identity names, or a mapping of identity name to parameter list.
        Defaults to the regional identities.
    tolerance : float
        Cells with an absolute sum above this count as violations.

    Returns
    -------
    pd.DataFrame
        Columns identity, region, year, max_abs, n_cells, n_violations.
    """
    if identities is None:
        identities = REGIONAL_IDENTITIES
    if not isinstance(identities, dict):
        identities = {name: None for name in identities}

    reports = []
    for name, parameters in identities.items():
        if name not in IDENTITIES:
            raise ValueError(f"Unknown identity: {name}")
        reducer = IDENTITIES[name]
        sums = reducer(table) if parameters is None else reducer(table, parameters)
        sums["abs"] = sums["value"].abs()
        summary = sums.groupby(["region", "year"], as_index=False).agg(
            max_abs=("abs", "max"),
            n_cells=("abs", "size"),
            n_violations=("abs", lambda s: int((s > tolerance).sum())),
        )
        summary.insert(0, "identity", name)
        reports.append(summary)

        violations = int(summary["n_violations"].sum())
        if violations:
            worst = summary["max_abs"].max()
            logger.warning(
                f"{name}: {violations} of {int(summary['n_cells'].sum())} cells "
                f"exceed {tolerance:g} (max |imbalance| {worst:.3g})"
            )
        else:
            logger.info(f"{name}: balanced within {tolerance:g}")

    if not reports:
        return pd.DataFrame(
            columns=["identity", "region", "year", "max_abs", "n_cells", "n_violations"]
        )
    return pd.concat(reports, ignore_index=True)


def regional_summation_gap(national, state_table, parameters):
    """
    Difference between the regional sum of each disaggregated entry and the
    national value, per (row, col, year, parameter).
    """
    key = ["row", "col", "year", "parameter"]
    nat = national.table(*parameters).groupby(key, as_index=False)["value"].sum()
    reg = state_table.table(*parameters).groupby(key, as_index=False)["value"].sum()
    gap = nat.merge(reg, on=key, how="outer", suffixes=("_national", "_regional"))
    gap = gap.fillna({"value_national": 0.0, "value_regional": 0.0})
    gap["gap"] = gap["value_regional"] - gap["value_national"]
    return gap
