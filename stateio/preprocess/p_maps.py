"""
Mapping tables between source-specific codes and the canonical NAICS codes
used by the national table, plus shared value normalization helpers.
"""

import pandas as pd

from stateio.configs import setup_logger, STATE_FIPS_FILE, SGF_STATES_FILE

logger = setup_logger("Maps")


def _read_map(path, columns, dtypes=None):
    frame = pd.read_csv(path, dtype=dtypes or str, keep_default_na=False)
    missing = [c for c in columns if c not in frame.columns]
    if missing:
        raise ValueError(f"Map {path} is missing columns {missing}")
    frame = frame[columns]
    return frame[(frame != "").all(axis=1)].reset_index(drop=True)


def load_state_fips(path=STATE_FIPS_FILE):
    """State FIPS codes (five digit, e.g. 01000) and state names."""
    return _read_map(path, ["fips", "state"])


def load_sgf_states(path=SGF_STATES_FILE):
    """Census state codes used in the State Government Finance files."""
    return _read_map(path, ["code", "state"])


def load_industry_codes(path):
    """BEA SAGDP line codes to NAICS. Line codes without a NAICS code are dropped."""
    frame = _read_map(path, ["LineCode", "naics"])
    frame["LineCode"] = frame["LineCode"].astype(int)
    return frame


def load_pce_map(path):
    """BEA PCE line codes to NAICS."""
    frame = _read_map(path, ["LineCode", "naics"])
    frame["LineCode"] = frame["LineCode"].astype(int)
    return frame


def load_sgf_map(path):
    return _read_map(path, ["sgf_code", "naics"])


def load_faf_map(path):
    """FAF SCTG2 commodity codes to NAICS."""
    frame = _read_map(path, ["sctg2", "naics"])
    frame["sctg2"] = frame["sctg2"].str.zfill(2)
    return frame


def load_usatrade_map(path):
    """USA Trade Online four digit NAICS to canonical NAICS."""
    return _read_map(path, ["naics4", "naics"])


def unit_factor(unit):
    """Multiplier that converts a dollar unit into billions of dollars."""
    unit = str(unit).lower()
    if "thousand" in unit:
        return 1e-6
    if "million" in unit:
        return 1e-3
    return 1.0


def parse_value_by_unit(unit, value):
    """Express ``value`` given in ``unit`` as billions of dollars."""
    return value * unit_factor(unit)


def extend_data(frame, column, existing, new):
    """
    Copy the rows where ``column == existing`` into new rows with
    ``column == new``. Rows already carrying ``new`` are replaced.

    Used to carry the last observed year of a source forward, e.g. reuse 2020
    government finance shares for 2021.
    """
    dtype = frame[column].dtype
    as_text = frame[column].astype(str)

    source = frame[as_text == str(existing)].copy()
    if source.empty:
        logger.warning(f"extend_data: no rows with {column} == {existing}")
    source[column] = pd.Series(str(new), index=source.index).astype(dtype)

    kept = frame[as_text != str(new)]
    return pd.concat([kept, source], ignore_index=True)


def apply_replacements(frame, replacement):
    """
    Apply ``{column: {new: existing}}`` replacements with extend_data.
    """
    for column, pairs in (replacement or {}).items():
        for new, existing in pairs.items():
            frame = extend_data(frame, column, existing, new)
            logger.info(f"Extended {column}={existing} to {column}={new}")
    return frame
