"""
State Table Construction

Builds the state table from the national table one stage at a time. Each
stage is a function ``stage(state_table, national, raw_data)`` that returns a
new AccountTable with its fact rows appended and the sets/elements it
introduces registered. Stages never touch rows written by earlier stages, and
later stages read what earlier ones wrote (imports are split by the
absorption built from intermediate and final demand, for instance), so the
order in PIPELINE_STAGES is fixed.

Stages, sixteen in all counting initialize_table, which PIPELINE_STAGES leaves out:
    initialize               Empty table with the state set and kept national sets
    intermediate             Intermediate demand/supply by GDP shares
    labor_capital            Value added x GDP share x solved labor share
    output_tax               State intermediate supply x national output tax rate
    investment               By GDP shares, collapsed to the ``invest`` column
    personal_consumption     By PCE shares
    household_supply         By PCE shares
    government               By SGF shares, collapsed to the ``govern`` column
    foreign_exports          By trade shares, GDP shares where trade has no data
    reexports                Negative part of total supply + exports
    foreign_imports          By state absorption
    margin_demand            By state absorption
    duty                     State imports x national duty rate
    tax                      State absorption x national tax rate
    regional_demand          Local/national sourcing of absorption via RPCs
    regional_margin_supply   Local/national sourcing of margin supply
"""

import numpy as np
import pandas as pd
from tqdm import tqdm

from stateio.configs import setup_logger, NOISE_TOLERANCE
from stateio.models.account_table import (
    AccountTable,
    DATA_COLUMNS,
    SET_COLUMNS,
    ELEMENT_COLUMNS,
)
from stateio.models.aggregates import (
    absorption,
    total_supply,
    output_tax_rate,
    absorption_tax_rate,
    import_duty_rate,
)
from stateio.models.exceptions import EmptyJoinError
from stateio.preprocess.shares import region_shares, disaggregate_by_shares
from stateio.preprocess.labor_shares import labor_shares

logger = setup_logger("StateTable")

KEY = ["row", "region", "year"]

# Sets carried over from the national table with their elements
KEPT_SETS = [
    "capital_demand",
    "commodity",
    "duty",
    "export",
    "import",
    "labor_demand",
    "margin",
    "output_tax",
    "personal_consumption",
    "sector",
    "tax",
    "trade",
    "transport",
    "year",
]
# Aggregate parameters carried over empty, each stage adds its members
AGGREGATE_SETS = ["Other_Final_Demand", "Use", "Supply", "Final_Demand", "Value_Added"]
EXCLUDED_ELEMENTS = ("Used", "Other")

# Parameters adjusted by absorption slack
ABSORPTION_SLACK = ["Tax", "Reexport", "Import", "Duty", "Margin_Demand"]


def _sets(*rows):
    return pd.DataFrame(list(rows), columns=SET_COLUMNS)


def _elements(*rows):
    return pd.DataFrame(list(rows), columns=ELEMENT_COLUMNS)


def _member_of(element, description, *sets):
    """Element rows placing ``element`` in each of ``sets``."""
    return [(s, element, description) for s in sets]


INTERMEDIATE_SETS = _sets(
    ("Intermediate_Demand", "Intermediate demand", "parameter"),
    ("Intermediate_Supply", "Intermediate supply", "parameter"),
)
INTERMEDIATE_ELEMENTS = _elements(
    *_member_of("intermediate_demand", "Intermediate demand", "Intermediate_Demand", "Use"),
    *_member_of("intermediate_supply", "Intermediate supply", "Intermediate_Supply", "Supply"),
)

LABOR_CAPITAL_SETS = _sets(
    ("Labor_Demand", "Labor demand", "parameter"),
    ("Capital_Demand", "Capital demand", "parameter"),
)
LABOR_CAPITAL_ELEMENTS = _elements(
    *_member_of("labor_demand", "Labor demand", "Labor_Demand", "Use", "Value_Added"),
    *_member_of("capital_demand", "Capital demand", "Capital_Demand", "Use", "Value_Added"),
)

OUTPUT_TAX_SETS = _sets(("Output_Tax", "Output tax net of subsidies", "parameter"))
OUTPUT_TAX_ELEMENTS = _elements(*_member_of("output_tax", "Output tax", "Output_Tax", "Use"))

INVESTMENT_SETS = _sets(
    ("Investment_Final_Demand", "Investment final demand", "parameter"),
    ("investment_final_demand", "Investment final demand", "col"),
)
INVESTMENT_ELEMENTS = _elements(
    ("investment_final_demand", "invest", "Investment"),
    *_member_of(
        "investment_final_demand",
        "Investment final demand",
        "Investment_Final_Demand",
        "Use",
        "Other_Final_Demand",
        "Final_Demand",
    ),
)

PERSONAL_CONSUMPTION_SETS = _sets(("Personal_Consumption", "Personal consumption", "parameter"))
PERSONAL_CONSUMPTION_ELEMENTS = _elements(
    *_member_of(
        "personal_consumption",
        "Personal consumption",
        "Personal_Consumption",
        "Use",
        "Final_Demand",
        "Other_Final_Demand",
    )
)

HOUSEHOLD_SUPPLY_SETS = _sets(("Household_Supply", "Household supply", "parameter"))
HOUSEHOLD_SUPPLY_ELEMENTS = _elements(
    *_member_of("household_supply", "Household supply", "Household_Supply", "Supply")
)

GOVERNMENT_SETS = _sets(
    ("Government_Final_Demand", "Government final demand", "parameter"),
    ("government_final_demand", "Government final demand", "col"),
)
GOVERNMENT_ELEMENTS = _elements(
    ("government_final_demand", "govern", "Government"),
    *_member_of(
        "government_final_demand",
        "Government final demand",
        "Government_Final_Demand",
        "Use",
        "Other_Final_Demand",
        "Final_Demand",
    ),
)

EXPORT_SETS = _sets(("Export", "Exports", "parameter"))
EXPORT_ELEMENTS = _elements(*_member_of("export", "Exports", "Export", "Use", "Final_Demand"))

REEXPORT_SETS = _sets(
    ("Reexport", "Reexports", "parameter"),
    ("reexport", "Reexports", "col"),
)
REEXPORT_ELEMENTS = _elements(
    ("reexport", "reexport", "Reexport column"),
    *_member_of("reexport", "Reexports", "Reexport", "Use"),
)

IMPORT_SETS = _sets(("Import", "Imports", "parameter"))
IMPORT_ELEMENTS = _elements(*_member_of("import", "Imports", "Import", "Supply"))

MARGIN_DEMAND_SETS = _sets(("Margin_Demand", "Margin demand", "parameter"))
MARGIN_DEMAND_ELEMENTS = _elements(
    *_member_of("margin_demand", "Margin demand", "Margin_Demand", "Supply")
)

DUTY_SETS = _sets(("Duty", "Import duties", "parameter"))
DUTY_ELEMENTS = _elements(*_member_of("duty", "Import duties", "Duty", "Supply"))

TAX_SETS = _sets(("Tax", "Taxes on absorption net of subsidies", "parameter"))
TAX_ELEMENTS = _elements(*_member_of("tax", "Taxes on absorption", "Tax", "Supply"))

REGIONAL_DEMAND_SETS = _sets(
    ("local_demand", "Local demand", "col"),
    ("national_demand", "National demand", "col"),
    ("Local_Demand", "Local demand", "parameter"),
    ("National_Demand", "National demand", "parameter"),
)
REGIONAL_DEMAND_ELEMENTS = _elements(
    ("local_demand", "local_demand", "Local demand column"),
    ("national_demand", "national_demand", "National demand column"),
    *_member_of("local_demand", "Local demand", "Local_Demand", "Supply"),
    *_member_of("national_demand", "National demand", "National_Demand", "Supply"),
)

MARGIN_SUPPLY_SETS = _sets(
    ("Local_Margin_Supply", "Local margin supply", "parameter"),
    ("National_Margin_Supply", "National margin supply", "parameter"),
    ("Margin_Supply", "Margin supply", "parameter"),
)
MARGIN_SUPPLY_ELEMENTS = _elements(
    *_member_of("local_margin_supply", "Local margin supply", "Local_Margin_Supply", "Margin_Supply", "Use"),
    *_member_of(
        "national_margin_supply", "National margin supply", "National_Margin_Supply", "Margin_Supply", "Use"
    ),
)


def _finish(frame):
    """Fact columns only, no missing values, deterministic order."""
    out = frame.dropna(subset=["value"])[DATA_COLUMNS]
    return out.sort_values(["parameter", "row", "col", "region", "year"]).reset_index(drop=True)


def _drop_noise(frame, stage, tolerance=NOISE_TOLERANCE):
    noise = frame["value"].abs() < tolerance
    if noise.any():
        logger.debug(f"{stage}: dropping {int(noise.sum())} values below {tolerance:g}")
    return frame[~noise]


def _require(frame, stage, detail):
    if frame.empty:
        raise EmptyJoinError(stage, detail)
    return frame


def _by_shares(national, shares, parameters, domain, stage):
    """disaggregate_by_shares, failing when national data exists but nothing matched."""
    if isinstance(parameters, str):
        parameters = [parameters]
    data = disaggregate_by_shares(national, shares, parameters, domain=domain)
    if data.empty and not national.table(*parameters).empty:
        raise EmptyJoinError(stage, f"no shares matched national {parameters}")
    return data


def _collapse_col(data, col):
    out = data.groupby(["row", "year", "parameter", "region"], as_index=False)["value"].sum()
    out["col"] = col
    return out


def _labor_share(national, raw_data):
    if "labor_share" in raw_data:
        return raw_data["labor_share"]
    return labor_shares(national, raw_data)


def initialize_table(national, raw_data, regularity_check=True):
    """
    Empty state table with the national sets it reuses and the ``state`` set.

    The aggregate parameter sets are declared without members; every stage
    registers the parameters it adds.
    """
    states = raw_data["state_map"]["state"].tolist()

    sets = pd.concat(
        [
            national.get_sets(*KEPT_SETS, *AGGREGATE_SETS),
            _sets(("state", "States", "region")),
        ],
        ignore_index=True,
    )
    elements = pd.concat(
        [
            national.get_elements(*KEPT_SETS),
            pd.DataFrame({"set": "state", "name": states, "description": states}),
        ],
        ignore_index=True,
    )
    elements = elements[~elements["name"].isin(EXCLUDED_ELEMENTS)]

    return AccountTable(None, sets, elements, regularity_check=regularity_check)


def disaggregate_intermediate(state_table, national, raw_data):
    """Intermediate demand and supply split by each state's share of sector GDP."""
    data = _by_shares(
        national,
        raw_data["gdp"],
        ["Intermediate_Demand", "Intermediate_Supply"],
        "sector",
        "intermediate",
    )
    return state_table.extend(_finish(data), INTERMEDIATE_SETS, INTERMEDIATE_ELEMENTS)


def disaggregate_labor_capital(state_table, national, raw_data):
    """
    Labor and capital demand per state.

    labor_demand = gdp share x national value added x labor share, and
    capital_demand the same with one minus the labor share.
    """
    shares = region_shares(raw_data["gdp"]).rename(columns={"naics": "col", "share": "region_share"})
    shares = shares[["year", "region", "col", "region_share"]]

    value_added = national.table("Value_Added").groupby(["col", "year"], as_index=False)["value"].sum()
    labor = _labor_share(national, raw_data)[["year", "region", "col", "labor_share"]]

    merged = shares.merge(value_added, on=["col", "year"]).merge(labor, on=["year", "region", "col"])
    _require(merged, "labor_capital", "gdp shares x value added x labor shares")

    missing = set(value_added["col"]) - set(merged["col"])
    if missing:
        logger.warning(f"labor_capital: no labor shares for sectors {sorted(missing)}")

    base = merged["region_share"] * merged["value"]
    labor_rows = merged.assign(
        row=national.label_for("Labor_Demand", "row"),
        parameter="labor_demand",
        value=base * merged["labor_share"],
    )
    capital_rows = merged.assign(
        row=national.label_for("Capital_Demand", "row"),
        parameter="capital_demand",
        value=base * (1 - merged["labor_share"]),
    )

    data = _finish(pd.concat([labor_rows, capital_rows], ignore_index=True))
    return state_table.extend(data, LABOR_CAPITAL_SETS, LABOR_CAPITAL_ELEMENTS)


def disaggregate_output_tax(state_table, national, raw_data):
    """
    Output tax = -(state intermediate supply) x national output tax rate.

    The national rate includes sector subsidies, so the state output tax is
    net of subsidies.
    """
    rate = output_tax_rate(national)[["col", "year", "value"]].rename(columns={"value": "rate"})
    supply = state_table.table("Intermediate_Supply").groupby(["col", "region", "year"], as_index=False)[
        "value"
    ].sum()

    merged = _require(supply.merge(rate, on=["col", "year"]), "output_tax", "intermediate supply x tax rate")
    merged["value"] = -merged["value"] * merged["rate"]
    merged["row"] = national.label_for("Output_Tax", "row")
    merged["parameter"] = "output_tax"

    data = _finish(_drop_noise(merged, "output_tax"))
    return state_table.extend(data, OUTPUT_TAX_SETS, OUTPUT_TAX_ELEMENTS)


def disaggregate_investment_final_demand(state_table, national, raw_data):
    data = _by_shares(national, raw_data["gdp"], "Investment_Final_Demand", "commodity", "investment")
    data = _collapse_col(data, "invest")
    return state_table.extend(_finish(data), INVESTMENT_SETS, INVESTMENT_ELEMENTS)


def disaggregate_personal_consumption(state_table, national, raw_data):
    data = _by_shares(national, raw_data["pce"], "Personal_Consumption", "commodity", "personal_consumption")
    return state_table.extend(_finish(data), PERSONAL_CONSUMPTION_SETS, PERSONAL_CONSUMPTION_ELEMENTS)


def disaggregate_household_supply(state_table, national, raw_data):
    data = _by_shares(national, raw_data["pce"], "Household_Supply", "commodity", "household_supply")
    return state_table.extend(_finish(data), HOUSEHOLD_SUPPLY_SETS, HOUSEHOLD_SUPPLY_ELEMENTS)


def disaggregate_government_final_demand(state_table, national, raw_data):
    data = _by_shares(national, raw_data["sgf"], "Government_Final_Demand", "commodity", "government")
    data = _collapse_col(data, "govern")
    return state_table.extend(_finish(data), GOVERNMENT_SETS, GOVERNMENT_ELEMENTS)


def export_shares(national, raw_data):
    """
    State shares of national exports per (row, year).

    Trade shares of the exports flow are used where the commodity-year has
    any; the remaining commodity-years fall back to GDP shares. Shares are
    normalized so each (row, year) sums to one.
    """
    trade = raw_data["trade_shares"]
    trade = trade.loc[trade["flow"] == "exports", ["year", "region", "naics", "value"]]
    trade = trade.rename(columns={"value": "share"})

    pairs = pd.MultiIndex.from_product(
        [national.element_names("commodity"), national.years], names=["naics", "year"]
    ).to_frame(index=False)
    covered = trade[["naics", "year"]].drop_duplicates()
    uncovered = pairs.merge(covered, on=["naics", "year"], how="left", indicator=True)
    uncovered = uncovered.loc[uncovered["_merge"] == "left_only", ["naics", "year"]]

    gdp = region_shares(raw_data["gdp"])[["year", "region", "naics", "share"]]
    fallback = uncovered.merge(gdp, on=["naics", "year"])
    if not fallback.empty:
        logger.info(
            f"foreign_exports: GDP shares used for {fallback[['naics', 'year']].drop_duplicates().shape[0]} "
            f"commodity-years without trade data"
        )

    shares = pd.concat([trade, fallback[trade.columns]], ignore_index=True)
    total = shares.groupby(["naics", "year"])["share"].transform("sum")
    shares = shares[total != 0].copy()
    shares["share"] = shares["share"] / total[total != 0]
    return shares.rename(columns={"naics": "row"})


def disaggregate_foreign_exports(state_table, national, raw_data):
    shares = export_shares(national, raw_data)
    exports = national.table("Export").drop(columns="region")

    merged = _require(exports.merge(shares, on=["row", "year"]), "foreign_exports", "exports x trade shares")
    merged["value"] = merged["value"] * merged["share"]
    return state_table.extend(_finish(merged), EXPORT_SETS, EXPORT_ELEMENTS)


def create_reexports(state_table, national, raw_data):
    """
    Reexports are the negative part of total supply plus exports.

    Where a state exports more of a commodity than it supplies, the excess
    (total_supply + export < 0) is recorded as a reexport. An empty result is
    valid.
    """
    supply = total_supply(state_table)[KEY + ["value"]]
    exports = state_table.table("Export").groupby(KEY, as_index=False)["value"].sum()

    merged = supply.merge(exports, on=KEY, suffixes=("_supply", "_export"))
    merged["value"] = merged["value_supply"] + merged["value_export"]
    merged = merged[merged["value"] < 0].copy()
    merged["col"] = "reexport"
    merged["parameter"] = "reexport"

    logger.info(f"reexports: {len(merged):,} state-commodity-years export more than they supply")
    return state_table.extend(_finish(merged), REEXPORT_SETS, REEXPORT_ELEMENTS)


def _absorption_shares(state_table):
    shares = absorption(state_table).rename(columns={"row": "naics", "parameter": "name"})
    return shares[["year", "region", "naics", "value", "name"]]


def disaggregate_foreign_imports(state_table, national, raw_data):
    data = _by_shares(national, _absorption_shares(state_table), "Import", "commodity", "foreign_imports")
    return state_table.extend(_finish(data), IMPORT_SETS, IMPORT_ELEMENTS)


def disaggregate_margin_demand(state_table, national, raw_data):
    data = _by_shares(national, _absorption_shares(state_table), "Margin_Demand", "commodity", "margin_demand")
    return state_table.extend(_finish(data), MARGIN_DEMAND_SETS, MARGIN_DEMAND_ELEMENTS)


def disaggregate_duty(state_table, national, raw_data):
    """Duty = state imports x national duty rate. Commodities without duty add nothing."""
    rate = import_duty_rate(national)[["row", "year", "value"]].rename(columns={"value": "rate"})
    imports = state_table.table("Import").groupby(KEY, as_index=False)["value"].sum()

    merged = imports.merge(rate, on=["row", "year"])
    if merged.empty:
        logger.info("duty: no dutiable imports")
        return state_table.extend(None, DUTY_SETS, DUTY_ELEMENTS)

    merged["value"] = merged["value"] * merged["rate"]
    merged["col"] = national.label_for("Duty", "col")
    merged["parameter"] = "duty"

    data = _finish(_drop_noise(merged, "duty"))
    return state_table.extend(data, DUTY_SETS, DUTY_ELEMENTS)


def disaggregate_tax(state_table, national, raw_data):
    """Tax = -(state absorption) x national tax rate, the rate net of subsidies."""
    rate = absorption_tax_rate(national)[["row", "year", "value"]].rename(columns={"value": "rate"})
    demand = absorption(state_table)[KEY + ["value"]]

    merged = _require(demand.merge(rate, on=["row", "year"]), "tax", "absorption x tax rate")
    merged["value"] = -merged["value"] * merged["rate"]
    merged["col"] = national.label_for("Tax", "col")
    merged["parameter"] = "tax"

    data = _finish(_drop_noise(merged, "tax"))
    return state_table.extend(data, TAX_SETS, TAX_ELEMENTS)


def _domestic_absorption(state_table):
    """Demand left for domestic sources per (row, region, year), positive."""
    parts = pd.concat(
        [absorption(state_table), state_table.table(*ABSORPTION_SLACK)], ignore_index=True
    )
    demand = parts.groupby(KEY, as_index=False)["value"].sum()
    demand = demand[demand["value"] < 0].copy()
    demand["value"] = -demand["value"]
    return demand


def create_regional_demand(state_table, national, raw_data):
    """
    Split domestic absorption into local and national sourcing.

    Regional demand is the smaller of two candidates:

    - absorption net of taxes, imports, duty, margins and reexports
    - total supply + exports - reexports

    and is zero when only one candidate exists. The local share is regional
    demand x RPC (RPC 1 where unknown) and the rest of the absorption
    candidate is sourced nationally, which can be negative.
    """
    demand = _domestic_absorption(state_table)

    parts = pd.concat(
        [
            total_supply(state_table),
            state_table.table("Export", "Reexport", normalize="Reexport"),
        ],
        ignore_index=True,
    )
    reexport_demand = parts.groupby(KEY, as_index=False)["value"].sum()

    regional = demand.merge(reexport_demand, on=KEY, how="outer", suffixes=("_abs", "_rex"))
    both = regional["value_abs"].notna() & regional["value_rex"].notna()
    regional["value"] = np.where(both, regional[["value_abs", "value_rex"]].min(axis=1), 0.0)
    _require(regional, "regional_demand", "no absorption or supply")

    rpc = raw_data["rpc"].rename(columns={"naics": "row"})[KEY + ["rpc"]]
    local = regional[KEY + ["value"]].merge(rpc, on=KEY, how="left")
    n_default = int(local["rpc"].isna().sum())
    if n_default:
        logger.info(f"regional_demand: {n_default} state-commodity-years without an RPC use 1")
    local["value"] = local["value"] * local["rpc"].fillna(1.0)

    national_demand = demand.merge(
        local[KEY + ["value"]].rename(columns={"value": "local"}), on=KEY, how="left"
    )
    national_demand["value"] = national_demand["value"] - national_demand["local"].fillna(0.0)

    local = local.assign(col="local_demand", parameter="local_demand")
    national_demand = national_demand.assign(col="national_demand", parameter="national_demand")

    data = pd.concat(
        [_drop_noise(local, "regional_demand"), _drop_noise(national_demand, "regional_demand")],
        ignore_index=True,
    )
    return state_table.extend(_finish(data), REGIONAL_DEMAND_SETS, REGIONAL_DEMAND_ELEMENTS)


def create_regional_margin_supply(state_table, national, raw_data):
    """
    Split national margin supply into local and national margin supply.

    National margin supply is given to states by their share of margin
    demand. The local part is the larger (least negative) of

    - total supply + exports - reexports + local demand, spread over
      margins by the margin mix of each commodity
    - total margin supply x RPC

    and the remainder is national margin supply.
    """
    margin = state_table.table("Margin_Demand").groupby(["col", "year", "region"], as_index=False)["value"].sum()
    margin["share"] = margin["value"] / margin.groupby(["year", "col"])["value"].transform("sum")

    total = national.table("Margin_Supply").drop(columns=["region", "parameter"])
    total = total.merge(margin[["col", "year", "region", "share"]], on=["year", "col"])
    _require(total, "regional_margin_supply", "margin supply x margin demand shares")
    total["value"] = total["value"] * total["share"]
    total = total[["row", "col", "year", "region", "value"]]

    mix = total.copy()
    mix["share"] = mix["value"] / mix.groupby(KEY)["value"].transform("sum")

    # Supply net of exports and reexports, plus local demand
    parts = pd.concat(
        [
            total_supply(state_table),
            state_table.table("Export"),
            state_table.table("Reexport", normalize="Reexport"),
            state_table.table("Local_Demand"),
        ],
        ignore_index=True,
    )
    available = parts.groupby(KEY, as_index=False)["value"].sum()
    available = available[available["value"] > 0].copy()
    available["value"] = -available["value"]

    by_supply = mix[KEY + ["col", "share"]].merge(available, on=KEY)
    by_supply["value"] = by_supply["share"] * by_supply["value"]

    rpc = raw_data["rpc"].rename(columns={"naics": "row"})[KEY + ["rpc"]]
    by_rpc = total.merge(rpc, on=KEY)
    by_rpc["value"] = by_rpc["value"] * by_rpc["rpc"]

    group = ["row", "col", "year", "region"]
    local = pd.concat([by_supply[group + ["value"]], by_rpc[group + ["value"]]], ignore_index=True)
    local = local.groupby(group, as_index=False)["value"].max()

    remainder = total.rename(columns={"value": "total"}).merge(local, on=group, how="outer")
    remainder = remainder.fillna({"total": 0.0, "value": 0.0})
    remainder["value"] = remainder["total"] - remainder["value"]

    local["parameter"] = "local_margin_supply"
    remainder["parameter"] = "national_margin_supply"

    data = pd.concat(
        [
            _drop_noise(local, "regional_margin_supply"),
            _drop_noise(remainder, "regional_margin_supply"),
        ],
        ignore_index=True,
    )
    return state_table.extend(_finish(data), MARGIN_SUPPLY_SETS, MARGIN_SUPPLY_ELEMENTS)


PIPELINE_STAGES = [
    ("intermediate", disaggregate_intermediate),
    ("labor_capital", disaggregate_labor_capital),
    ("output_tax", disaggregate_output_tax),
    ("investment", disaggregate_investment_final_demand),
    ("personal_consumption", disaggregate_personal_consumption),
    ("household_supply", disaggregate_household_supply),
    ("government", disaggregate_government_final_demand),
    ("foreign_exports", disaggregate_foreign_exports),
    ("reexports", create_reexports),
    ("foreign_imports", disaggregate_foreign_imports),
    ("margin_demand", disaggregate_margin_demand),
    ("duty", disaggregate_duty),
    ("tax", disaggregate_tax),
    ("regional_demand", create_regional_demand),
    ("regional_margin_supply", create_regional_margin_supply),
]
STAGE_NAMES = [name for name, _ in PIPELINE_STAGES]


def select_stages(stages=None):
    """
    Pipeline stages to run, in pipeline order.

    ``stages`` is a list of stage names; None runs every stage.
    """
    if stages is None:
        return list(PIPELINE_STAGES)
    unknown = [s for s in stages if s not in STAGE_NAMES]
    if unknown:
        raise ValueError(f"Unknown pipeline stages: {unknown}")
    return [(name, stage) for name, stage in PIPELINE_STAGES if name in stages]


def create_state_table(national, raw_data, solver=None, stages=None, progress=False, regularity_check=True):
    """
    Disaggregate the national table into a state table.

    Parameters
    ----------
    national : AccountTable
        National table.
    raw_data : dict
        Loaded sources keyed gdp, labor, capital, tax, subsidy, pce, sgf,
        trade_shares, rpc and state_map. May also hold a precomputed
        ``labor_share`` table.
    solver : str, optional
        Labor share backend, "ipopt" or "scipy".
    stages : list of str, optional
        Subset of stage names to run, always in pipeline order.
    progress : bool
        Show a tqdm progress bar over the stages.
    regularity_check : bool
        Check the catalogs of the finished table.

    Returns
    -------
    AccountTable
        The state table.
    """
    selected = select_stages(stages)

    # Labor shares are solved once per run
    raw_data = dict(raw_data)
    if "labor_share" not in raw_data and any(name == "labor_capital" for name, _ in selected):
        raw_data["labor_share"] = labor_shares(national, raw_data, solver=solver)

    state_table = initialize_table(national, raw_data)
    logger.info(f"Initialized state table with {len(raw_data['state_map'])} states")

    for name, stage in tqdm(selected, desc="State table", disable=not progress):
        before = len(state_table)
        state_table = stage(state_table, national, raw_data)
        logger.info(f"Stage {name}: added {len(state_table) - before:,} rows")

    if regularity_check:
        state_table.regularity_check()
    logger.info(f"State table complete: {len(state_table):,} rows")
    return state_table


def adjust_by_absorption(state_table, sign):
    """
    Move positive domestic absorption residuals out of the trade flows.

    Where absorption net of taxes, imports, duty, margins and reexports is
    positive for a (row, region, year), the residual is subtracted from
    reexports and exports and added to household supply with the given sign.

    Parameters
    ----------
    state_table : AccountTable
        A state table with the trade stages applied.
    sign : int
        +1 or -1, the direction of the household supply adjustment.
    """
    if sign not in (1, -1):
        raise ValueError(f"sign must be +1 or -1, got {sign}")

    parts = pd.concat(
        [absorption(state_table), state_table.table(*ABSORPTION_SLACK)], ignore_index=True
    )
    diff = parts.groupby(KEY, as_index=False)["value"].sum().rename(columns={"value": "diff"})
    diff = diff[diff["diff"] > 0]
    logger.info(f"adjust_by_absorption: {len(diff):,} cells with positive residual")

    adjusted = []
    for set_name, direction in (("Reexport", -1), ("Export", -1), ("Household_Supply", sign)):
        frame = state_table.table(set_name).merge(diff, on=KEY, how="left")
        frame["value"] = frame["value"] + direction * frame["diff"].fillna(0.0)
        adjusted.append(frame[DATA_COLUMNS])

    replaced = (
        state_table.element_names("Reexport")
        + state_table.element_names("Export")
        + state_table.element_names("Household_Supply")
    )
    data = state_table.data
    data = pd.concat([data[~data["parameter"].isin(replaced)]] + adjusted, ignore_index=True)
    return AccountTable(data, state_table.sets, state_table.elements)
