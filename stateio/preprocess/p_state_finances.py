"""
Census Annual Survey of State Government Finances (SGF).

Each year ships as a fixed-width text file named ``YYstate35.txt`` or
``YYdata35.txt``. Values are in thousands of dollars. The 1999 file uses a
different column layout from every other year.
"""

import re
from pathlib import Path

import pandas as pd

from stateio.configs import setup_logger
from stateio.preprocess.p_maps import load_sgf_states, apply_replacements, unit_factor

logger = setup_logger("StateFinances")

SGF_COLSPECS = [(0, 2), (14, 17), (17, 29)]
SGF_COLSPECS_1999 = [(0, 2), (21, 24), (24, 35)]
SGF_NAME = "government_final_demand"


def sgf_file_year(filename, pattern):
    """Four digit year encoded in an SGF file name, or None if it doesn't match."""
    match = re.match(pattern, filename)
    if match is None:
        return None
    year = int(match.group("year"))
    return 1900 + year if year > 90 else 2000 + year


def read_sgf_file(path, year):
    """Read one fixed-width SGF file into (fips, sgf_code, value, year)."""
    colspecs = SGF_COLSPECS_1999 if year == 1999 else SGF_COLSPECS
    frame = pd.read_fwf(
        path,
        colspecs=colspecs,
        names=["fips", "sgf_code", "value"],
        header=None,
        dtype={"fips": str, "sgf_code": str},
    )
    frame = frame.dropna(subset=["value"])
    frame["value"] = frame["value"].astype(float) * unit_factor("thousands")
    frame["year"] = year
    return frame


def clean_state_finances(raw, sgf_map, sgf_states, replacement=None):
    """
    Map census codes to NAICS and FIPS codes to states.

    Parameters
    ----------
    raw : pd.DataFrame
        Columns fips, sgf_code, value (billions), year.
    sgf_map : pd.DataFrame
        sgf_code to naics.
    sgf_states : pd.DataFrame
        code to state.
    replacement : dict, optional
        ``{column: {new: existing}}`` passed to apply_replacements.
    """
    census = raw.merge(sgf_map, on="sgf_code")
    census = census.groupby(["fips", "year", "naics"], as_index=False)["value"].sum()
    census = census.merge(sgf_states, left_on="fips", right_on="code")
    census = census.rename(columns={"state": "region"})
    census["name"] = SGF_NAME
    census = census[["year", "region", "naics", "value", "name"]]

    census = apply_replacements(census, replacement)
    return census.sort_values(["year", "naics", "region"]).reset_index(drop=True)


def load_state_finances(pattern, directory, sgf_map, sgf_states=None, replacement=None):
    """
    Load every SGF file in ``directory`` whose name matches ``pattern``.

    ``pattern`` must define a named group ``year`` holding the two digit year.
    """
    directory = Path(directory)
    if sgf_states is None:
        sgf_states = load_sgf_states()

    frames = []
    for path in sorted(directory.iterdir()):
        year = sgf_file_year(path.name, pattern)
        if year is None:
            continue
        logger.debug(f"Reading SGF {year} from {path.name}")
        frames.append(read_sgf_file(path, year))

    if not frames:
        raise FileNotFoundError(f"No SGF files matching {pattern} in {directory}")

    census = clean_state_finances(pd.concat(frames, ignore_index=True), sgf_map, sgf_states, replacement)
    logger.info(f"Loaded SGF: {len(frames)} years, {len(census):,} values")
    return census
