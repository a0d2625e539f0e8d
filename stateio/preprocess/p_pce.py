"""
BEA personal consumption expenditures by state (SAPCE).
"""

from stateio.configs import setup_logger
from stateio.preprocess.p_maps import load_state_fips
from stateio.preprocess.p_state_gdp import read_bea_csv, melt_bea_table, RAW_COLUMNS

logger = setup_logger("PCE")


def clean_pce_data(frame, name, state_fips, pce_map):
    """Normalize an already-read SAPCE table and map PCE lines to NAICS."""
    long = melt_bea_table(frame, state_fips)
    long = long.merge(pce_map, on="LineCode")
    long = long.groupby(["year", "region", "naics"], as_index=False)["value"].sum()
    long["name"] = name

    out = long[RAW_COLUMNS].sort_values(["year", "naics", "region"])
    logger.info(f"Loaded {name}: {len(out):,} state-commodity-year values")
    return out.reset_index(drop=True)


def load_pce_data(path, pce_map, name="pce", state_fips=None):
    if state_fips is None:
        state_fips = load_state_fips()
    return clean_pce_data(read_bea_csv(path), name, state_fips, pce_map)
