"""
BEA regional GDP tables (SAGDP).

The same reader serves SAGDP2 (GDP), SAGDP4 (compensation), SAGDP5
(subsidies), SAGDP6 (taxes on production) and SAGDP7 (gross operating
surplus). Data is available from https://apps.bea.gov/regional/downloadzip.htm
"""

import pandas as pd
from pandas.api.types import is_numeric_dtype

from stateio.configs import setup_logger, SUPPRESSED_MARKERS
from stateio.preprocess.p_maps import load_state_fips, unit_factor

logger = setup_logger("StateGDP")

BEA_ID_COLUMNS = ["GeoFIPS", "LineCode", "Unit", "Description"]
BEA_DROP_COLUMNS = ["GeoName", "Region", "TableName", "IndustryClassification"]
RAW_COLUMNS = ["year", "region", "naics", "value", "name"]


def read_bea_csv(path):
    """Read a BEA regional CSV, skipping the four footnote lines."""
    logger.debug(f"Reading BEA file: {path}")
    return pd.read_csv(
        path,
        skipfooter=4,
        engine="python",
        dtype={"GeoFIPS": str},
        na_values=SUPPRESSED_MARKERS,
        encoding="latin-1",
    )


def melt_bea_table(frame, state_fips):
    """
    Long (year, region, LineCode, value) table from a wide BEA table.

    Suppressed cells ((NA), (D), (NM), (L), (T)) are dropped, not zeroed.
    Values are converted to billions of dollars using the Unit column.
    """
    frame = frame.drop(columns=[c for c in BEA_DROP_COLUMNS if c in frame.columns])
    missing = [c for c in BEA_ID_COLUMNS if c not in frame.columns]
    if missing:
        raise ValueError(f"BEA table is missing columns {missing}")

    year_columns = [c for c in frame.columns if str(c).strip().isdigit()]
    long = frame.melt(
        id_vars=BEA_ID_COLUMNS,
        value_vars=year_columns,
        var_name="year",
        value_name="value",
    )

    # Text columns may be object or StringDtype depending on the pandas version
    if not is_numeric_dtype(long["value"]):
        text = long["value"].astype(str).str.strip()
        keep = long["value"].notna() & ~text.isin(SUPPRESSED_MARKERS)
        long["value"] = pd.to_numeric(text.where(keep), errors="raise")
    long = long.dropna(subset=["value", "LineCode"])
    long["year"] = long["year"].astype(str).str.strip().astype(int)
    long["LineCode"] = pd.to_numeric(long["LineCode"]).astype(int)
    long["value"] = long["value"] * long["Unit"].map(unit_factor)

    long["GeoFIPS"] = long["GeoFIPS"].astype(str).str.strip().str.strip('"').str.strip()
    long = long.merge(state_fips, left_on="GeoFIPS", right_on="fips")
    return long.rename(columns={"state": "region"})


def clean_state_gdp(frame, name, state_fips, industry_codes):
    """Normalize an already-read SAGDP table. Zero values are dropped."""
    long = melt_bea_table(frame, state_fips)
    long = long.merge(industry_codes, on="LineCode")
    long["name"] = name
    long = long[long["value"] != 0]

    out = long[RAW_COLUMNS].sort_values(["year", "naics", "region"])
    logger.info(f"Loaded {name}: {len(out):,} state-industry-year values")
    return out.reset_index(drop=True)


def load_state_gdp(path, name, industry_codes, state_fips=None):
    """
    Load a SAGDP table.

    Parameters
    ----------
    path : str or Path
        SAGDP CSV file.
    name : str
        Label for the ``name`` column (gdp, labor, capital, tax, subsidy).
    industry_codes : pd.DataFrame
        LineCode to NAICS map, see load_industry_codes.
    state_fips : pd.DataFrame, optional
        FIPS to state map, bundled map by default.

    Returns
    -------
    pd.DataFrame
        Columns year, region, naics, value, name with values in billions.
    """
    if state_fips is None:
        state_fips = load_state_fips()
    return clean_state_gdp(read_bea_csv(path), name, state_fips, industry_codes)
