"""
Foreign trade shares by state.

Exports and imports come from USA Trade Online (NAICS, every state, World
Total). Crop exports are replaced by the USDA ERS state export estimates,
which are far more reliable for agriculture than port-of-export data.
"""

import numpy as np
import pandas as pd
from openpyxl.utils import range_boundaries

from stateio.configs import setup_logger, AGRICULTURE_CODE, TRADE_BASE_YEAR
from stateio.preprocess.p_maps import load_state_fips, apply_replacements

logger = setup_logger("Trade")

TRADE_COLUMNS = ["year", "region", "naics", "value", "flow"]
VALUE_COLUMNS = {
    "exports": "Total Exports Value ($US)",
    "imports": "Customs Value (Gen) ($US)",
}


def clean_usa_trade(frame, flow, value_column, state_fips, usatrade_map):
    """
    Normalize a USA Trade Online export. Dollar values become billions.

    Parameters
    ----------
    frame : pd.DataFrame
        Columns State, Country, Time, Commodity and ``value_column``.
    flow : str
        "exports" or "imports".
    """
    df = frame.rename(
        columns={
            "State": "region",
            "Country": "country",
            "Time": "year",
            "Commodity": "commodity",
            value_column: "value",
        }
    )
    df = df[df["country"].astype(str).str.strip() == "World Total"].copy()

    df["naics4"] = df["commodity"].astype(str).str.extract(r"^(\d{4}) ", expand=False)
    df["year"] = df["year"].astype(str).str.extract(r"(\d{4})", expand=False)
    df = df.dropna(subset=["naics4", "year"])
    df["year"] = df["year"].astype(int)

    df["value"] = (
        df["value"].astype(str).str.replace(",", "", regex=False).astype(float) / 1e9
    )
    df["region"] = df["region"].astype(str).str.strip().str.replace(
        r"^Dist\b", "District", regex=True
    )

    df = df.merge(state_fips[["state"]], left_on="region", right_on="state")
    df = df.merge(usatrade_map, on="naics4")
    df = df.groupby(["year", "region", "naics"], as_index=False)["value"].sum()
    df["flow"] = flow
    return df[TRADE_COLUMNS]


def load_usa_raw_trade_data(path, flow, usatrade_map, value_column=None, state_fips=None):
    """Load a USA Trade Online CSV (three banner lines, header on line four)."""
    if state_fips is None:
        state_fips = load_state_fips()
    if value_column is None:
        value_column = VALUE_COLUMNS[flow]

    frame = pd.read_csv(path, skiprows=3, usecols=range(5), dtype=str)
    df = clean_usa_trade(frame, flow, value_column, state_fips, usatrade_map)
    logger.info(f"Loaded USA Trade {flow}: {len(df):,} values")
    return df


def clean_usda_agricultural_flow(block, agriculture_code=AGRICULTURE_CODE, flow="exports", replacement=None):
    """
    State shares of agricultural exports from a USDA ERS sheet block.

    The first row of the block holds the years, data starts on the fourth
    row, and the first column holds the state names.
    """
    block = pd.DataFrame(block).reset_index(drop=True)
    years = [int(float(y)) for y in block.iloc[0, 1:]]

    data = block.iloc[3:].copy()
    data.columns = ["region"] + years
    data["region"] = data["region"].astype(str).str.strip()

    long = data.melt(id_vars="region", var_name="year", value_name="value")
    long["value"] = pd.to_numeric(long["value"], errors="coerce")
    long = long.dropna(subset=["value"])
    long["year"] = long["year"].astype(int)

    long["value"] = long["value"] / long.groupby("year")["value"].transform("sum")
    long["naics"] = agriculture_code
    long["flow"] = flow

    long = apply_replacements(long[TRADE_COLUMNS], replacement)
    long["year"] = long["year"].astype(int)
    return long.reset_index(drop=True)


def load_usda_agricultural_flow(path, sheet, cell_range, agriculture_code=AGRICULTURE_CODE, flow="exports", replacement=None):
    """
    Load the USDA ERS commodity detail by state workbook.

    ``cell_range`` is an Excel range such as "A3:AA55".
    """
    min_col, min_row, max_col, max_row = range_boundaries(cell_range)
    block = pd.read_excel(
        path,
        sheet_name=sheet,
        header=None,
        usecols=list(range(min_col - 1, max_col)),
        skiprows=min_row - 1,
        nrows=max_row - min_row + 1,
        engine="openpyxl",
    )
    df = clean_usda_agricultural_flow(block, agriculture_code, flow, replacement)
    logger.info(f"Loaded USDA agricultural {flow}: {df['year'].nunique()} years")
    return df


def _backfill(shares, base_year):
    first = shares.groupby(["naics", "flow", "region"], as_index=False)["year"].min()
    first = first[first["year"] > base_year].merge(shares, on=["naics", "flow", "region", "year"])
    if first.empty:
        return shares

    rows = []
    for rec in first.itertuples(index=False):
        for year in range(base_year, rec.year):
            rows.append((year, rec.region, rec.naics, rec.value, rec.flow))
    filled = pd.DataFrame(rows, columns=TRADE_COLUMNS)
    logger.info(
        f"Backfilled {len(first):,} trade share series to {base_year} ({len(filled):,} rows)"
    )
    return pd.concat([shares, filled], ignore_index=True)


def trade_shares(exports, imports, usda_agricultural_flow, agricultural_code=AGRICULTURE_CODE, base_year=TRADE_BASE_YEAR):
    """
    State shares of each (year, naics, flow) trade total.

    1. Yearly shares of each state in the commodity/flow total.
    2. Years with no observations for a commodity/flow fall back to the
       all-years share of each state.
    3. USA Trade crop exports are replaced by the USDA series.
    4. Series starting after ``base_year`` are backfilled with their first
       observed share.

    Returns
    -------
    pd.DataFrame
        Columns year, region, naics, value, flow. Shares sum to one per
        (year, naics, flow).
    """
    df = pd.concat([exports, imports], ignore_index=True)

    default = df.groupby(["naics", "flow", "region"], as_index=False)["value"].sum()
    default["default"] = default["value"] / default.groupby(["naics", "flow"])["value"].transform("sum")
    default = default.drop(columns="value")

    yearly = df.groupby(["year", "naics", "flow", "region"], as_index=False)["value"].sum()
    yearly["value"] = yearly["value"] / yearly.groupby(["year", "naics", "flow"])["value"].transform("sum")

    grid = pd.MultiIndex.from_product(
        [
            sorted(df["year"].unique()),
            sorted(df["naics"].unique()),
            sorted(df["flow"].unique()),
            sorted(df["region"].unique()),
        ],
        names=["year", "naics", "flow", "region"],
    ).to_frame(index=False)

    shares = grid.merge(yearly, on=["year", "naics", "flow", "region"], how="left")
    shares = shares.merge(default, on=["naics", "flow", "region"], how="left")
    observed = shares.groupby(["year", "naics", "flow"])["value"].transform("count") > 0
    n_default = shares.loc[~observed, ["year", "naics", "flow"]].drop_duplicates().shape[0]
    if n_default:
        logger.warning(f"{n_default} commodity-flow-years have no trade data, using all-year shares")
    shares["value"] = np.where(observed, shares["value"], shares["default"])
    shares = shares.dropna(subset=["value"])

    is_crop_export = (shares["naics"] == agricultural_code) & (shares["flow"] == "exports")
    shares = pd.concat(
        [shares.loc[~is_crop_export, TRADE_COLUMNS], usda_agricultural_flow[TRADE_COLUMNS]],
        ignore_index=True,
    )

    shares = _backfill(shares, base_year)
    total = shares.groupby(["year", "naics", "flow"])["value"].transform("sum")
    shares = shares[total > 0].copy()
    shares["value"] = shares["value"] / total[total > 0]

    return shares.sort_values(["flow", "naics", "year", "region"]).reset_index(drop=True)
