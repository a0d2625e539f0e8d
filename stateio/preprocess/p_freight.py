"""
Freight Analysis Framework (FAF5) flows and regional purchase coefficients.

Two state-level FAF files are used: the current file (annual, 2017 onward)
and the reprocessed historical file (1997, 2002, 2007, 2012). Years the
historical file does not cover take the nearest benchmark year.

The regional purchase coefficient (RPC) of a commodity in a state is the
share of the state's demand served by shipments originating in that state:

    rpc = local / (local + national)
"""

import re

import pandas as pd

from stateio.configs import (
    setup_logger,
    FAF_BENCHMARK_YEARS,
    FAF_KEEP_COLUMNS,
    FAF_VALUE_REGEX,
    FREIGHT_TOLERANCE,
)
from stateio.preprocess.p_maps import load_state_fips

logger = setup_logger("Freight")

FLOW_COLUMNS = ["origin", "destination", "year", "naics", "value"]
FIRST_ANNUAL_YEAR = 2017


def faf_value_columns(columns, max_year, regex=FAF_VALUE_REGEX):
    """value_YYYY columns with YYYY <= max_year."""
    keep = []
    for column in columns:
        match = re.match(regex, str(column))
        if match and int(match.group(1)) <= max_year:
            keep.append(column)
    return keep


def clean_faf_table(frame, state_fips, faf_map, max_year, keep_columns=FAF_KEEP_COLUMNS):
    """
    State-to-state flows by NAICS from a wide FAF table.

    Flows with |value| <= 1e-5 are dropped. Origins and destinations are
    two digit state FIPS codes.
    """
    value_columns = faf_value_columns(frame.columns, max_year)
    long = frame[keep_columns + value_columns].melt(
        id_vars=keep_columns, var_name="year", value_name="value"
    )
    long["year"] = long["year"].str.replace("value_", "", regex=False).astype(int)
    long["value"] = pd.to_numeric(long["value"], errors="coerce")
    long = long[long["value"].abs() > FREIGHT_TOLERANCE]

    for column in ("dms_origst", "dms_destst", "sctg2"):
        long[column] = long[column].astype(str).str.strip().str.zfill(2)

    long = long.groupby(["dms_origst", "dms_destst", "sctg2", "year"], as_index=False)["value"].sum()

    states = state_fips.assign(fips=state_fips["fips"].str[:2])[["fips", "state"]]
    long = long.merge(states.rename(columns={"fips": "dms_origst", "state": "origin"}), on="dms_origst")
    long = long.merge(states.rename(columns={"fips": "dms_destst", "state": "destination"}), on="dms_destst")
    long = long.merge(faf_map, on="sctg2")
    return long[FLOW_COLUMNS]


def benchmark_years(max_year):
    """Map each FAF data year to the years it stands in for."""
    years = pd.DataFrame(
        [(benchmark, year) for year, benchmark in FAF_BENCHMARK_YEARS.items()],
        columns=["benchmark", "year"],
    )
    annual = pd.DataFrame(
        {"benchmark": range(FIRST_ANNUAL_YEAR, max_year + 1), "year": range(FIRST_ANNUAL_YEAR, max_year + 1)}
    )
    return pd.concat([years, annual], ignore_index=True)


def faf_demand(current, reprocessed, max_year):
    """
    Demand by destination state split into local and national sourcing.

    Returns
    -------
    pd.DataFrame
        Columns region, year, naics, locality, value.
    """
    flows = pd.concat(
        [
            current[current["year"] >= FIRST_ANNUAL_YEAR],
            reprocessed[reprocessed["year"] < FIRST_ANNUAL_YEAR],
        ],
        ignore_index=True,
    )
    flows = flows.rename(columns={"year": "benchmark"}).merge(benchmark_years(max_year), on="benchmark")
    flows["locality"] = (flows["origin"] == flows["destination"]).map({True: "local", False: "national"})

    demand = flows.groupby(["destination", "year", "naics", "locality"], as_index=False)["value"].sum()
    return demand.rename(columns={"destination": "region"})


def load_faf_data(state_path, reprocessed_path, faf_map, max_year, state_fips=None):
    """Load both FAF state files and aggregate them to demand by destination."""
    if state_fips is None:
        state_fips = load_state_fips()

    def usecols(column):
        return column in FAF_KEEP_COLUMNS or bool(faf_value_columns([column], max_year))

    dtypes = {c: str for c in FAF_KEEP_COLUMNS}
    frames = []
    for path in (state_path, reprocessed_path):
        logger.info(f"Reading FAF file: {path}")
        raw = pd.read_csv(path, usecols=usecols, dtype=dtypes)
        frames.append(clean_faf_table(raw, state_fips, faf_map, max_year))

    demand = faf_demand(frames[0], frames[1], max_year)
    logger.info(f"FAF demand: {len(demand):,} rows, years {demand['year'].min()}-{demand['year'].max()}")
    return demand


def regional_purchase_coefficients(national, demand, adjusted_demand=None):
    """
    RPC per (region, year, naics).

    Commodities absent from FAF (services, mostly) take the mean of the
    traded goods in the same (year, region, locality). Commodities listed in
    ``adjusted_demand`` get the given value. Results are clipped into [0, 1].

    Parameters
    ----------
    national : AccountTable
        National table, used for the commodity list.
    demand : pd.DataFrame
        Output of faf_demand.
    adjusted_demand : dict, optional
        naics -> fixed RPC.
    """
    adjusted_demand = adjusted_demand or {}
    commodities = national.element_names("commodity")

    traded = set(demand["naics"].unique())
    non_traded = [c for c in commodities if c not in traded]

    average = demand.groupby(["year", "region", "locality"], as_index=False)["value"].mean()
    filled = average.merge(pd.DataFrame({"naics": non_traded}), how="cross")
    logger.info(f"{len(non_traded)} commodities not in FAF take the traded-goods average")

    combined = pd.concat([demand, filled[demand.columns]], ignore_index=True)
    wide = combined.pivot_table(
        index=["region", "year", "naics"], columns="locality", values="value", aggfunc="sum"
    ).reset_index()
    wide.columns.name = None
    for locality in ("local", "national"):
        if locality not in wide.columns:
            wide[locality] = float("nan")

    wide["rpc"] = wide["local"] / (wide["local"] + wide["national"])
    rpc = wide[["region", "year", "naics", "rpc"]].dropna().copy()

    overrides = rpc["naics"].isin(adjusted_demand.keys())
    rpc.loc[overrides, "rpc"] = rpc.loc[overrides, "naics"].map(adjusted_demand)

    out_of_bounds = (rpc["rpc"] < 0) | (rpc["rpc"] > 1)
    if out_of_bounds.any():
        logger.warning(f"Clipping {int(out_of_bounds.sum())} RPC values into [0, 1]")
        rpc["rpc"] = rpc["rpc"].clip(0, 1)

    return rpc.sort_values(["year", "naics", "region"]).reset_index(drop=True)
