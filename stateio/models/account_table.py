"""
Account Table Container

Long-format fact table with the sets and elements catalogs that give its
identifiers meaning. Both the national table handed to the disaggregation and
the state table it produces are AccountTable instances.

Fact table columns:
    row, col, region, year, parameter, value

Sets catalog columns:
    name, description, domain

Elements catalog columns:
    set, name, description

A set lives in exactly one domain (row, col, region, year or parameter). The
elements of a set are the identifiers that may appear in that column of the
fact table. A parameter set such as ``Use`` is an aggregate whose elements are
other parameter names, so ``table("Use")`` returns every fact row whose
parameter belongs to ``Use``.

Instances are never modified after construction; every transformation
returns a new AccountTable.
"""

from pathlib import Path

import pandas as pd
from pandas.api.types import is_list_like

from stateio.configs import setup_logger
from stateio.models.exceptions import SchemaError

logger = setup_logger("AccountTable")

DATA_COLUMNS = ["row", "col", "region", "year", "parameter", "value"]
SET_COLUMNS = ["name", "description", "domain"]
ELEMENT_COLUMNS = ["set", "name", "description"]
DOMAINS = ("row", "col", "region", "year", "parameter")
ID_COLUMNS = ["row", "col", "region", "parameter"]
ID_DTYPE = object


def _as_id(series):
    """Identifier columns are always object, never the pandas string dtype."""
    return series.astype(str).astype(ID_DTYPE)


def _empty(columns):
    return pd.DataFrame({c: pd.Series(dtype=ID_DTYPE) for c in columns})


def _normalize_data(data):
    if data is None:
        frame = _empty(DATA_COLUMNS)
        frame["year"] = frame["year"].astype("int64")
        frame["value"] = frame["value"].astype(float)
        return frame

    missing = [c for c in DATA_COLUMNS if c not in data.columns]
    if missing:
        raise SchemaError("Fact table is missing columns", missing)

    frame = data[DATA_COLUMNS].copy()
    frame["region"] = frame["region"].fillna("")
    for column in ID_COLUMNS:
        frame[column] = _as_id(frame[column])
    frame["year"] = frame["year"].astype("int64")
    frame["value"] = frame["value"].astype(float)
    return frame.reset_index(drop=True)


def _normalize_catalog(frame, columns, key):
    if frame is None:
        return _empty(columns)

    missing = [c for c in columns if c not in frame.columns]
    if missing:
        raise SchemaError("Catalog is missing columns", missing)

    out = frame[columns].copy()
    out["description"] = out["description"].fillna("")
    for column in columns:
        out[column] = _as_id(out[column])
    return out.drop_duplicates(subset=key, ignore_index=True)


class AccountTable:
    """
    Immutable fact table plus sets/elements catalogs.

    Parameters
    ----------
    data : pd.DataFrame, optional
        Fact rows with columns row, col, region, year, parameter, value.
    sets : pd.DataFrame, optional
        Sets catalog with columns name, description, domain.
    elements : pd.DataFrame, optional
        Elements catalog with columns set, name, description.
    regularity_check : bool
        Validate the catalogs against each other and the fact table.
    """

    def __init__(self, data=None, sets=None, elements=None, regularity_check=False):
        self._data = _normalize_data(data)
        # Conflicting domains are kept here so regularity_check can report them
        self._sets = _normalize_catalog(sets, SET_COLUMNS, ["name", "domain"])
        self._elements = _normalize_catalog(elements, ELEMENT_COLUMNS, ["set", "name"])

        if regularity_check:
            self.regularity_check()

    def __len__(self):
        return len(self._data)

    def __repr__(self):
        return (
            f"AccountTable(rows={len(self._data)}, sets={len(self._sets)}, "
            f"elements={len(self._elements)})"
        )

    @property
    def data(self) -> pd.DataFrame:
        return self._data.copy()

    @property
    def sets(self) -> pd.DataFrame:
        return self._sets.copy()

    @property
    def elements(self) -> pd.DataFrame:
        return self._elements.copy()

    @property
    def years(self):
        return sorted(self._data["year"].unique().tolist())

    # Catalog lookups

    def domain_of(self, set_name):
        """Domain of a declared set."""
        match = self._sets.loc[self._sets["name"] == set_name, "domain"]
        if match.empty:
            raise SchemaError("Unknown set", [set_name])
        return match.iloc[0]

    def element_names(self, set_name):
        """Identifiers belonging to a set, typed for comparison with the fact table."""
        domain = self.domain_of(set_name)
        names = self._elements.loc[self._elements["set"] == set_name, "name"]
        if domain == "year":
            return [int(n) for n in names]
        return names.tolist()

    def get_sets(self, *names):
        if not names:
            return self.sets
        return self._sets[self._sets["name"].isin(names)].reset_index(drop=True)

    def get_elements(self, *names):
        if not names:
            return self.elements
        return self._elements[self._elements["set"].isin(names)].reset_index(drop=True)

    def _domain_filters(self, set_names):
        filters = {}
        for name in set_names:
            domain = self.domain_of(name)
            filters.setdefault(domain, set()).update(self.element_names(name))
        return filters

    # Queries

    def table(self, *set_names, normalize=None, **filters) -> pd.DataFrame:
        """
        Select fact rows by set membership.

        Sets in the same domain are unioned, filters on different domains are
        intersected. Keyword arguments filter a fact column by a scalar or a
        list of values.

        Parameters
        ----------
        *set_names : str
            Names of declared sets.
        normalize : str, optional
            A set whose rows have their sign flipped in the result.
        **filters
            Column filters, e.g. ``year=2022``.

        Returns
        -------
        pd.DataFrame
            A copy of the matching fact rows.
        """
        frame = self._data
        mask = pd.Series(True, index=frame.index)

        for domain, names in self._domain_filters(set_names).items():
            mask &= frame[domain].isin(names)

        for column, value in filters.items():
            if column not in DATA_COLUMNS:
                raise SchemaError("Unknown fact column", [column])
            values = list(value) if is_list_like(value) else [value]
            mask &= frame[column].isin(values)

        out = frame.loc[mask].reset_index(drop=True)

        if normalize is not None:
            domain = self.domain_of(normalize)
            flip = out[domain].isin(self.element_names(normalize))
            out.loc[flip, "value"] = -out.loc[flip, "value"]

        return out

    def label_for(self, set_name, column):
        """The single row or col label used by the rows of a parameter set."""
        labels = self.table(set_name)[column].unique()
        if len(labels) != 1:
            raise SchemaError(
                f"Expected one {column} label for {set_name}, found {len(labels)}",
                labels,
            )
        return labels[0]

    def year_slice(self, year):
        """Same catalogs, fact rows for a single year."""
        return AccountTable(
            self._data[self._data["year"] == year], self._sets, self._elements
        )

    def parameter_values(self, set_name, year=None):
        """Map (row, col, region) to value for one parameter set."""
        frame = self.table(set_name) if year is None else self.table(set_name, year=year)
        grouped = frame.groupby(["row", "col", "region"])["value"].sum()
        return grouped.to_dict()

    # Growth

    def _check_domains(self, sets):
        combined = pd.concat([self._sets, sets], ignore_index=True)
        domains = combined.groupby("name")["domain"].nunique()
        conflicts = domains[domains > 1].index.tolist()
        if conflicts:
            raise SchemaError("Set declared with conflicting domains", conflicts)

    def extend(self, data=None, sets=None, elements=None):
        """Return a new table with fact rows and catalog rows appended."""
        sets = _normalize_catalog(sets, SET_COLUMNS, ["name", "domain"])
        elements = _normalize_catalog(elements, ELEMENT_COLUMNS, ["set", "name"])
        self._check_domains(sets)

        new_data = self._data
        if data is not None and len(data):
            new_data = pd.concat([self._data, _normalize_data(data)], ignore_index=True)

        return AccountTable(
            new_data,
            pd.concat([self._sets, sets], ignore_index=True),
            pd.concat([self._elements, elements], ignore_index=True),
        )

    def union(self, other):
        """Stack two tables with compatible catalogs."""
        return self.extend(other._data, other._sets, other._elements)

    # Validation

    def regularity_check(self):
        """
        Raise SchemaError on catalog inconsistencies.

        Checked, in order: conflicting set domains, unknown domains, elements
        referencing undeclared sets, fact identifiers that no set declares.
        """
        domains = self._sets.groupby("name")["domain"].nunique()
        conflicts = domains[domains > 1].index.tolist()
        if conflicts:
            raise SchemaError("Set declared with conflicting domains", conflicts)

        unknown = self._sets.loc[~self._sets["domain"].isin(DOMAINS), "name"]
        if not unknown.empty:
            raise SchemaError("Set with unknown domain", unknown.unique())

        orphans = self._elements.loc[
            ~self._elements["set"].isin(self._sets["name"]), "set"
        ]
        if not orphans.empty:
            raise SchemaError("Elements reference undeclared sets", orphans.unique())

        declared = self._elements.merge(
            self._sets[["name", "domain"]].rename(columns={"name": "set"}), on="set"
        )
        undeclared = []
        for domain in DOMAINS:
            known = set(declared.loc[declared["domain"] == domain, "name"])
            values = self._data[domain]
            if domain == "year":
                known = {int(k) for k in known}
            if domain == "region":
                values = values[values != ""]
            undeclared.extend(
                f"{domain}:{v}" for v in values.unique() if v not in known
            )
        if undeclared:
            raise SchemaError("Fact identifiers not declared in any set", undeclared)

        return True

    # Persistence

    def save(self, directory, fmt="csv"):
        """Write data, sets and elements into ``directory``."""
        directory = Path(directory)
        directory.mkdir(parents=True, exist_ok=True)

        if fmt == "parquet":
            self._data.to_parquet(directory / "data.parquet", index=False)
        elif fmt == "csv":
            self._data.to_csv(directory / "data.csv", index=False)
        else:
            raise ValueError(f"Unknown table format: {fmt}")

        self._sets.to_csv(directory / "sets.csv", index=False)
        self._elements.to_csv(directory / "elements.csv", index=False)
        logger.info(f"Saved {len(self._data):,} fact rows to {directory}")
        return directory

    @classmethod
    def load(cls, directory, regularity_check=False):
        directory = Path(directory)
        id_types = {c: str for c in ID_COLUMNS}

        if (directory / "data.parquet").exists():
            data = pd.read_parquet(directory / "data.parquet")
        elif (directory / "data.csv").exists():
            data = pd.read_csv(
                directory / "data.csv", dtype=id_types, keep_default_na=False
            )
        else:
            raise FileNotFoundError(f"No data.csv or data.parquet in {directory}")

        sets = pd.read_csv(directory / "sets.csv", dtype=str, keep_default_na=False)
        elements = pd.read_csv(
            directory / "elements.csv", dtype=str, keep_default_na=False
        )
        return cls(data, sets, elements, regularity_check=regularity_check)
