"""
Regional allocation shares and the generic disaggregation primitive.
"""

import pandas as pd

from stateio.configs import setup_logger, FALLBACK_SHARE_LABEL
from stateio.models.account_table import DATA_COLUMNS
from stateio.models.exceptions import EmptyJoinError

logger = setup_logger("Shares")

SHARE_COLUMNS = ["year", "region", "naics", "value", "name"]


def region_shares(frame, by=("year", "naics", "name")):
    """
    Add a ``share`` column: value over the sum of values within ``by``.

    Groups summing to zero have no meaningful shares and are dropped.
    """
    by = list(by)
    out = frame.copy()
    total = out.groupby(by)["value"].transform("sum")
    zero = total == 0
    if zero.any():
        n_groups = out.loc[zero, by].drop_duplicates().shape[0]
        logger.warning(f"Dropping {n_groups} share groups that sum to zero")
    out = out[~zero].copy()
    out["share"] = out["value"] / total[~zero]
    return out.reset_index(drop=True)


def fill_missing_shares(national_keys, shares, fallback_label=FALLBACK_SHARE_LABEL):
    """
    Uniform shares for (naics, year) pairs present nationally but not in
    ``shares``. Every state present in ``shares`` for that year gets weight 1.
    Years without any share data are left out.
    """
    covered = shares[["naics", "year"]].drop_duplicates()
    missing = national_keys.merge(covered, on=["naics", "year"], how="left", indicator=True)
    missing = missing.loc[missing["_merge"] == "left_only", ["naics", "year"]]
    if missing.empty:
        return pd.DataFrame(columns=SHARE_COLUMNS)

    states_years = shares[["year", "region"]].drop_duplicates()
    filled = missing.merge(states_years, on="year")
    unplaced = missing.merge(states_years[["year"]].drop_duplicates(), on="year", how="left", indicator=True)
    unplaced = unplaced[unplaced["_merge"] == "left_only"]
    if not unplaced.empty:
        logger.warning(
            f"{len(unplaced)} (naics, year) pairs have no share data for their year and are not disaggregated"
        )

    filled["value"] = 1.0
    filled["name"] = fallback_label
    logger.warning(
        f"Uniform '{fallback_label}' shares used for {len(missing) - len(unplaced)} (naics, year) pairs: "
        f"{sorted(missing['naics'].unique().tolist())}"
    )
    return filled[SHARE_COLUMNS]


def disaggregate_by_shares(national, shares, parameters, domain="commodity", fill_missing=True, fallback_label=FALLBACK_SHARE_LABEL):
    """
    Split national values across regions in proportion to shares.

    Parameters
    ----------
    national : AccountTable
        National table.
    shares : pd.DataFrame
        Columns year, region, naics, value, name. Values need not be
        normalized; each national entry is split by value over the sum of
        the matching values.
    parameters : str or list of str
        Parameter sets to disaggregate.
    domain : str
        Set whose elements are matched against ``naics`` (e.g. "sector"
        matches the col label, "commodity" the row label).
    fill_missing : bool
        Distribute national entries with no share data, or with shares
        summing to zero, uniformly. Otherwise zero-sum shares raise
        EmptyJoinError.
    fallback_label : str
        ``name`` given to uniform shares.

    Returns
    -------
    pd.DataFrame
        Fact rows with the national row, col, year and parameter and a region.
        Regional values sum to the national value.
    """
    if isinstance(parameters, str):
        parameters = [parameters]

    column = national.domain_of(domain)
    entries = national.table(*parameters, domain)
    shares = shares[SHARE_COLUMNS]

    if fill_missing:
        keys = entries[[column, "year"]].drop_duplicates().rename(columns={column: "naics"})
        filled = fill_missing_shares(keys, shares, fallback_label)
        if not filled.empty:
            shares = pd.concat([shares, filled], ignore_index=True)

    merged = entries.drop(columns="region").merge(
        shares[["year", "region", "naics", "value"]].rename(columns={"value": "share", "naics": column}),
        on=["year", column],
    )

    group = ["row", "col", "year", "parameter"]
    total = merged.groupby(group)["share"].transform("sum")
    zero = total == 0
    if zero.any():
        n_entries = merged.loc[zero, group].drop_duplicates().shape[0]
        if not fill_missing:
            raise EmptyJoinError(
                "disaggregate_by_shares", f"shares sum to zero for {n_entries} national entries"
            )
        # Uniform over the states that reported, so the national value is kept
        logger.warning(
            f"Shares sum to zero for {n_entries} national entries, using '{fallback_label}' shares"
        )
        merged.loc[zero, "share"] = 1.0
        total = merged.groupby(group)["share"].transform("sum")
    merged["value"] = merged["value"] * merged["share"] / total

    out = merged[DATA_COLUMNS].sort_values(["parameter", "row", "col", "year", "region"])
    return out.reset_index(drop=True)
