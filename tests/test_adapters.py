"""Tests for the raw data adapters and mapping helpers."""

import numpy as np
import pandas as pd
import pytest

from stateio.preprocess.p_maps import (
    load_state_fips,
    load_sgf_states,
    parse_value_by_unit,
    extend_data,
    apply_replacements,
)
from stateio.preprocess.p_state_gdp import clean_state_gdp
from stateio.preprocess.p_pce import clean_pce_data
from stateio.preprocess.p_state_finances import sgf_file_year, clean_state_finances, read_sgf_file
from stateio.preprocess.p_trade import (
    clean_usa_trade,
    clean_usda_agricultural_flow,
    trade_shares,
    TRADE_COLUMNS,
)
from stateio.preprocess.p_freight import (
    clean_faf_table,
    faf_demand,
    regional_purchase_coefficients,
    FLOW_COLUMNS,
)
from stateio.configs import DATA_SOURCES

from conftest import YEAR


def _bea_frame(rows, years=("2021", "2022")):
    """rows: (GeoFIPS, LineCode, Unit, values...)"""
    records = []
    for fips, line, unit, *values in rows:
        record = {
            "GeoFIPS": fips,
            "GeoName": "",
            "Region": "",
            "TableName": "SAGDP2N",
            "LineCode": line,
            "IndustryClassification": "...",
            "Description": "Industry",
            "Unit": unit,
        }
        record.update(dict(zip(years, values)))
        records.append(record)
    return pd.DataFrame(records)


class TestMaps:
    def test_bundled_state_fips(self) -> None:
        states = load_state_fips()
        assert len(states) == 51
        assert states.loc[states["state"] == "District of Columbia", "fips"].iloc[0] == "11000"

    def test_bundled_sgf_states(self) -> None:
        states = load_sgf_states()
        assert len(states) == 51
        assert states.loc[states["code"] == "09", "state"].iloc[0] == "District of Columbia"

    @pytest.mark.parametrize(
        "unit, value, expected",
        [
            ("Thousands of dollars", 2500.0, 0.0025),
            ("Millions of current dollars", 1500.0, 1.5),
            ("Billions of dollars", 3.0, 3.0),
            ("Percent", 7.0, 7.0),
        ],
    )
    def test_parse_value_by_unit(self, unit, value, expected) -> None:
        assert parse_value_by_unit(unit, value) == pytest.approx(expected)

    def test_extend_data_copies_last_year(self) -> None:
        frame = pd.DataFrame({"year": [2019, 2020], "value": [1.0, 2.0]})
        out = extend_data(frame, "year", 2020, 2021)
        assert sorted(out["year"]) == [2019, 2020, 2021]
        assert out.loc[out["year"] == 2021, "value"].iloc[0] == 2.0
        assert out["year"].dtype == frame["year"].dtype

    def test_extend_data_replaces_existing_rows(self) -> None:
        frame = pd.DataFrame({"year": [2020, 2021], "value": [2.0, 9.0]})
        out = extend_data(frame, "year", 2020, 2021)
        assert len(out) == 2
        assert out.loc[out["year"] == 2021, "value"].iloc[0] == 2.0

    def test_apply_replacements_string_keys(self) -> None:
        frame = pd.DataFrame({"year": [2020], "value": [2.0]})
        out = apply_replacements(frame, {"year": {"2021": "2020", "2022": "2020"}})
        assert sorted(out["year"]) == [2020, 2021, 2022]


class TestStateGDP:
    def test_clean_state_gdp(self, state_map) -> None:
        frame = _bea_frame(
            [
                (' "01000"', 3, "Millions of current dollars", "1500", "(D)"),
                (' "02000"', 3, "Millions of current dollars", "500", "0"),
                (' "02000"', 99, "Millions of current dollars", "7", "7"),
            ]
        )
        codes = pd.DataFrame({"LineCode": [3], "naics": ["agr"]})
        out = clean_state_gdp(frame, "gdp", state_map, codes)

        assert list(out.columns) == ["year", "region", "naics", "value", "name"]
        assert len(out) == 2
        assert set(out["year"]) == {2021}
        assert out.set_index("region")["value"].to_dict() == pytest.approx({"StateA": 1.5, "StateB": 0.5})
        assert (out["name"] == "gdp").all()

    @pytest.mark.parametrize("dtype", [object, "string"])
    def test_suppressed_cells_dropped_for_any_text_dtype(self, state_map, dtype) -> None:
        frame = _bea_frame(
            [
                ("01000", 3, "Millions of current dollars", "1500", " (D) "),
                ("02000", 3, "Millions of current dollars", "(NA)", "250"),
            ]
        )
        frame[["2021", "2022"]] = frame[["2021", "2022"]].astype(dtype)
        codes = pd.DataFrame({"LineCode": [3], "naics": ["agr"]})

        out = clean_state_gdp(frame, "gdp", state_map, codes)
        values = out.set_index(["region", "year"])["value"].to_dict()
        assert values == pytest.approx({("StateA", 2021): 1.5, ("StateB", 2022): 0.25})

    def test_suppressed_pce_cells_dropped(self, state_map) -> None:
        frame = _bea_frame(
            [
                ("01000", 1, "Millions of current dollars", "100", "(L)"),
                ("01000", 2, "Millions of current dollars", "50", "20"),
            ]
        ).astype({"2021": "string", "2022": "string"})
        pce_map = pd.DataFrame({"LineCode": [1, 2], "naics": ["agr", "agr"]})
        out = clean_pce_data(frame, "pce", state_map, pce_map)
        assert out.set_index("year")["value"].to_dict() == pytest.approx({2021: 0.15, 2022: 0.02})

    def test_unparseable_value_raises(self, state_map) -> None:
        frame = _bea_frame([("01000", 3, "Millions of current dollars", "1500", "n/a?")])
        with pytest.raises(ValueError):
            clean_state_gdp(frame, "gdp", state_map, pd.DataFrame({"LineCode": [3], "naics": ["agr"]}))

    def test_missing_columns(self, state_map) -> None:
        frame = pd.DataFrame({"GeoFIPS": ["01000"], "2022": [1.0]})
        with pytest.raises(ValueError, match="missing columns"):
            clean_state_gdp(frame, "gdp", state_map, pd.DataFrame({"LineCode": [3], "naics": ["agr"]}))

    def test_clean_pce_sums_lines(self, state_map) -> None:
        frame = _bea_frame(
            [
                ("01000", 1, "Millions of current dollars", 100.0, 200.0),
                ("01000", 2, "Millions of current dollars", 50.0, 20.0),
            ]
        )
        pce_map = pd.DataFrame({"LineCode": [1, 2], "naics": ["agr", "agr"]})
        out = clean_pce_data(frame, "pce", state_map, pce_map)
        assert out.set_index("year")["value"].to_dict() == pytest.approx({2021: 0.15, 2022: 0.22})


class TestStateFinances:
    @pytest.mark.parametrize(
        "filename, year",
        [("99state35.txt", 1999), ("05data35.txt", 2005), ("22state35.txt", 2022), ("readme.txt", None)],
    )
    def test_sgf_file_year(self, filename, year) -> None:
        pattern = DATA_SOURCES["state_finances"]["pattern"]
        assert sgf_file_year(filename, pattern) == year

    def test_read_fixed_width(self, tmp_path) -> None:
        path = tmp_path / "22state35.txt"
        path.write_text(
            "01" + " " * 12 + "E12" + "2500".rjust(12) + "\n"
            + "02" + " " * 12 + "E12" + "1000".rjust(12) + "\n"
        )
        frame = read_sgf_file(path, 2022)
        assert list(frame["sgf_code"]) == ["E12", "E12"]
        np.testing.assert_allclose(frame["value"], [0.0025, 0.001])

    def test_clean_state_finances(self) -> None:
        raw = pd.DataFrame(
            {
                "fips": ["01", "01", "02"],
                "sgf_code": ["E12", "E16", "E12"],
                "value": [1.0, 2.0, 4.0],
                "year": [2020, 2020, 2020],
            }
        )
        sgf_map = pd.DataFrame({"sgf_code": ["E12", "E16"], "naics": ["srv", "srv"]})
        sgf_states = pd.DataFrame({"code": ["01", "02"], "state": ["StateA", "StateB"]})
        out = clean_state_finances(raw, sgf_map, sgf_states, {"year": {"2021": "2020"}})

        assert sorted(set(out["year"])) == [2020, 2021]
        values = out[out["year"] == 2021].set_index("region")["value"]
        assert values["StateA"] == pytest.approx(3.0)
        assert values["StateB"] == pytest.approx(4.0)
        assert (out["name"] == "government_final_demand").all()


class TestTrade:
    def test_clean_usa_trade(self) -> None:
        frame = pd.DataFrame(
            {
                "State": ["Dist of Columbia", "Dist of Columbia", "Alabama"],
                "Commodity": ["1111 Oilseeds And Grains", "1111 Oilseeds And Grains", "All Commodities"],
                "Country": ["World Total", "Canada", "World Total"],
                "Time": ["2022", "2022", "2022"],
                "Total Exports Value ($US)": ["2,000,000,000", "5", "9"],
            }
        )
        usatrade_map = pd.DataFrame({"naics4": ["1111"], "naics": ["111CA"]})
        out = clean_usa_trade(frame, "exports", "Total Exports Value ($US)", load_state_fips(), usatrade_map)

        assert len(out) == 1
        row = out.iloc[0]
        assert row["region"] == "District of Columbia"
        assert row["naics"] == "111CA"
        assert row["value"] == pytest.approx(2.0)
        assert row["flow"] == "exports"

    def test_clean_usda_agricultural_flow(self) -> None:
        block = pd.DataFrame(
            [
                [None, 2021, 2022],
                ["", "", ""],
                ["", "", ""],
                ["StateA", 30, 10],
                ["StateB", 70, 30],
            ]
        )
        out = clean_usda_agricultural_flow(block, replacement={"year": {"2023": "2022"}})
        shares = out.set_index(["year", "region"])["value"]
        assert shares[(2021, "StateA")] == pytest.approx(0.3)
        assert shares[(2022, "StateB")] == pytest.approx(0.75)
        assert shares[(2023, "StateB")] == pytest.approx(0.75)
        assert (out["naics"] == "111CA").all()

    def _series(self, rows, flow):
        return pd.DataFrame([(y, r, n, v, flow) for y, r, n, v in rows], columns=TRADE_COLUMNS)

    def test_backfill_first_observed_share(self) -> None:
        exports = self._series([(2003, "StateA", "3361", 0.7), (2003, "StateB", "3361", 0.3)], "exports")
        imports = self._series([(2003, "StateA", "3361", 1.0)], "imports")
        usda = self._series([(2003, "StateA", "111CA", 0.5), (2003, "StateB", "111CA", 0.5)], "exports")

        shares = trade_shares(exports, imports, usda, agricultural_code="111CA", base_year=1997)
        series = shares[
            (shares["naics"] == "3361") & (shares["flow"] == "exports") & (shares["region"] == "StateA")
        ].set_index("year")["value"]

        assert sorted(series.index) == list(range(1997, 2004))
        np.testing.assert_allclose(series.loc[1997:2002], 0.7)

    def test_shares_normalized_and_crops_replaced(self) -> None:
        exports = self._series(
            [
                (2020, "StateA", "3361", 5.0),
                (2020, "StateB", "3361", 15.0),
                (2020, "StateA", "111CA", 1.0),
                (2021, "StateA", "3361", 2.0),
            ],
            "exports",
        )
        imports = self._series([(2020, "StateA", "3361", 1.0), (2021, "StateB", "3361", 3.0)], "imports")
        usda = self._series(
            [(y, r, "111CA", v) for y in (2020, 2021) for r, v in (("StateA", 0.4), ("StateB", 0.6))], "exports"
        )
        shares = trade_shares(exports, imports, usda, base_year=2020)

        totals = shares.groupby(["year", "naics", "flow"])["value"].sum()
        np.testing.assert_allclose(totals, 1.0, rtol=1e-9)

        crops = shares[(shares["naics"] == "111CA") & (shares["year"] == 2020)].set_index("region")["value"]
        assert crops["StateB"] == pytest.approx(0.6)

        cars = shares[(shares["naics"] == "3361") & (shares["flow"] == "exports") & (shares["year"] == 2020)]
        assert cars.set_index("region")["value"]["StateB"] == pytest.approx(0.75)


class TestFreight:
    def test_clean_faf_table(self) -> None:
        frame = pd.DataFrame(
            {
                "fr_orig": ["", "", ""],
                "dms_origst": ["1", "1", "1"],
                "dms_destst": ["1", "2", "2"],
                "fr_dest": ["", "", ""],
                "trade_type": ["1", "1", "1"],
                "sctg2": ["1", "1", "1"],
                "value_2017": [5.0, 3.0, 0.000001],
                "value_2050": [1.0, 1.0, 1.0],
            }
        )
        faf_map = pd.DataFrame({"sctg2": ["01"], "naics": ["agr"]})
        out = clean_faf_table(frame, load_state_fips(), faf_map, max_year=2023)

        assert list(out.columns) == FLOW_COLUMNS
        assert set(out["year"]) == {2017}
        flows = out.set_index("destination")["value"]
        assert flows["Alabama"] == pytest.approx(5.0)
        assert flows["Alaska"] == pytest.approx(3.0)

    def test_faf_demand_benchmarks(self) -> None:
        current = pd.DataFrame(
            [("StateA", "StateA", 2017, "agr", 4.0), ("StateB", "StateA", 2017, "agr", 1.0)],
            columns=FLOW_COLUMNS,
        )
        reprocessed = pd.DataFrame(
            [("StateA", "StateA", 2012, "agr", 2.0), ("StateA", "StateA", 2017, "agr", 99.0)],
            columns=FLOW_COLUMNS,
        )
        demand = faf_demand(current, reprocessed, max_year=2018)

        local = demand[demand["locality"] == "local"].set_index("year")["value"]
        assert local[2010] == pytest.approx(2.0)
        assert local[2014] == pytest.approx(2.0)
        assert local[2015] == pytest.approx(4.0)
        assert local[2017] == pytest.approx(4.0)
        assert 2018 not in local.index

        national = demand[demand["locality"] == "national"]
        assert set(national["year"]) == {2015, 2016, 2017}

    def test_regional_purchase_coefficients(self, national) -> None:
        demand = pd.DataFrame(
            [
                ("StateA", YEAR, "agr", "local", 3.0),
                ("StateA", YEAR, "agr", "national", 1.0),
                ("StateB", YEAR, "agr", "local", 1.0),
                ("StateB", YEAR, "agr", "national", 3.0),
            ],
            columns=["region", "year", "naics", "locality", "value"],
        )
        rpc = regional_purchase_coefficients(national, demand, adjusted_demand={"srv": 0.3})

        assert rpc["rpc"].between(0, 1).all()
        values = rpc.set_index(["region", "naics"])["rpc"]
        assert values[("StateA", "agr")] == pytest.approx(0.75)
        assert values[("StateB", "agr")] == pytest.approx(0.25)
        assert values[("StateA", "srv")] == pytest.approx(0.3)

    def test_non_traded_commodities_take_average(self, national) -> None:
        demand = pd.DataFrame(
            [
                ("StateA", YEAR, "agr", "local", 3.0),
                ("StateA", YEAR, "agr", "national", 1.0),
            ],
            columns=["region", "year", "naics", "locality", "value"],
        )
        rpc = regional_purchase_coefficients(national, demand)
        values = rpc.set_index("naics")["rpc"]
        assert values["srv"] == pytest.approx(0.75)
