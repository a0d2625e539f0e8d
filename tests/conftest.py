"""Shared fixtures: a small balanced national table and matching raw data.

Two sectors/commodities (agr, srv), one margin (trd), one year (2022) and
two states. The national table satisfies zero profit, market clearance and
margin balance exactly.
"""

import pandas as pd
import pytest

from stateio.models.account_table import AccountTable

YEAR = 2022
STATES = ["StateA", "StateB"]

NATIONAL_SETS = [
    ("commodity", "Commodities", "row"),
    ("sector", "Sectors", "col"),
    ("margin", "Margins", "col"),
    ("trade", "Trade margin", "col"),
    ("year", "Years", "year"),
    ("labor_demand", "Labor", "row"),
    ("capital_demand", "Capital", "row"),
    ("output_tax", "Output tax", "row"),
    ("sector_subsidy", "Sector subsidies", "row"),
    ("duty", "Duty", "col"),
    ("import", "Imports", "col"),
    ("export", "Exports", "col"),
    ("tax", "Tax", "col"),
    ("subsidies", "Subsidies", "col"),
    ("personal_consumption", "Personal consumption", "col"),
    ("investment", "Investment", "col"),
    ("government", "Government", "col"),
    ("Intermediate_Demand", "", "parameter"),
    ("Intermediate_Supply", "", "parameter"),
    ("Labor_Demand", "", "parameter"),
    ("Capital_Demand", "", "parameter"),
    ("Value_Added", "", "parameter"),
    ("Output_Tax", "", "parameter"),
    ("Sector_Subsidy", "", "parameter"),
    ("Household_Supply", "", "parameter"),
    ("Import", "", "parameter"),
    ("Tax", "", "parameter"),
    ("Subsidies", "", "parameter"),
    ("Duty", "", "parameter"),
    ("Margin_Demand", "", "parameter"),
    ("Margin_Supply", "", "parameter"),
    ("Personal_Consumption", "", "parameter"),
    ("Investment_Final_Demand", "", "parameter"),
    ("Government_Final_Demand", "", "parameter"),
    ("Export", "", "parameter"),
    ("Other_Final_Demand", "", "parameter"),
    ("Final_Demand", "", "parameter"),
    ("Use", "", "parameter"),
    ("Supply", "", "parameter"),
]

NATIONAL_ELEMENTS = {
    "commodity": ["agr", "srv"],
    "sector": ["agr", "srv"],
    "margin": ["trd"],
    "trade": ["trd"],
    "year": [str(YEAR)],
    "labor_demand": ["labor"],
    "capital_demand": ["capital"],
    "output_tax": ["othtax"],
    "sector_subsidy": ["subsidy"],
    "duty": ["duty"],
    "import": ["imports"],
    "export": ["exports"],
    "tax": ["tax"],
    "subsidies": ["subsidies"],
    "personal_consumption": ["pce"],
    "investment": ["inv_eq", "inv_res"],
    "government": ["fed", "sl"],
    "Intermediate_Demand": ["intermediate_demand"],
    "Intermediate_Supply": ["intermediate_supply"],
    "Labor_Demand": ["labor_demand"],
    "Capital_Demand": ["capital_demand"],
    "Value_Added": ["labor_demand", "capital_demand"],
    "Output_Tax": ["output_tax"],
    "Sector_Subsidy": ["sector_subsidy"],
    "Household_Supply": ["household_supply"],
    "Import": ["import"],
    "Tax": ["tax"],
    "Subsidies": ["subsidies"],
    "Duty": ["duty"],
    "Margin_Demand": ["margin_demand"],
    "Margin_Supply": ["margin_supply"],
    "Personal_Consumption": ["personal_consumption"],
    "Investment_Final_Demand": ["investment_final_demand"],
    "Government_Final_Demand": ["government_final_demand"],
    "Export": ["export"],
    "Other_Final_Demand": [
        "personal_consumption",
        "investment_final_demand",
        "government_final_demand",
    ],
    "Final_Demand": [
        "personal_consumption",
        "investment_final_demand",
        "government_final_demand",
        "export",
    ],
    "Use": [
        "intermediate_demand",
        "labor_demand",
        "capital_demand",
        "output_tax",
        "personal_consumption",
        "investment_final_demand",
        "government_final_demand",
        "export",
        "margin_supply",
    ],
    "Supply": [
        "intermediate_supply",
        "household_supply",
        "import",
        "tax",
        "subsidies",
        "duty",
        "margin_demand",
        "sector_subsidy",
    ],
}

# (row, col, parameter, value)
NATIONAL_FACTS = [
    ("agr", "agr", "intermediate_demand", -10.0),
    ("srv", "agr", "intermediate_demand", -20.0),
    ("agr", "srv", "intermediate_demand", -15.0),
    ("srv", "srv", "intermediate_demand", -40.0),
    ("agr", "agr", "intermediate_supply", 100.0),
    ("srv", "agr", "intermediate_supply", 4.0),
    ("srv", "srv", "intermediate_supply", 220.0),
    ("agr", "srv", "intermediate_supply", 3.0),
    ("labor", "agr", "labor_demand", -30.0),
    ("capital", "agr", "capital_demand", -40.0),
    ("labor", "srv", "labor_demand", -100.0),
    ("capital", "srv", "capital_demand", -60.0),
    ("othtax", "agr", "output_tax", -5.0),
    ("othtax", "srv", "output_tax", -10.0),
    ("subsidy", "agr", "sector_subsidy", 1.0),
    ("subsidy", "srv", "sector_subsidy", 2.0),
    ("srv", "pce", "household_supply", 5.0),
    ("agr", "imports", "import", 20.0),
    ("srv", "imports", "import", 10.0),
    ("agr", "tax", "tax", 4.0),
    ("srv", "tax", "tax", 8.0),
    ("agr", "subsidies", "subsidies", -1.0),
    ("agr", "duty", "duty", 2.0),
    ("agr", "trd", "margin_demand", 6.0),
    ("srv", "trd", "margin_demand", 4.0),
    ("srv", "trd", "margin_supply", -10.0),
    ("agr", "pce", "personal_consumption", -30.0),
    ("srv", "pce", "personal_consumption", -110.0),
    ("agr", "inv_eq", "investment_final_demand", -3.0),
    ("agr", "inv_res", "investment_final_demand", -2.0),
    ("srv", "inv_eq", "investment_final_demand", -20.0),
    ("srv", "inv_res", "investment_final_demand", -10.0),
    ("agr", "fed", "government_final_demand", -1.0),
    ("agr", "sl", "government_final_demand", -1.0),
    ("srv", "fed", "government_final_demand", -10.0),
    ("srv", "sl", "government_final_demand", -20.0),
    ("agr", "exports", "export", -72.0),
    ("srv", "exports", "export", -11.0),
]


def _raw(rows, name):
    """rows: (region, naics, value) for YEAR."""
    return pd.DataFrame(
        [(YEAR, region, naics, value, name) for region, naics, value in rows],
        columns=["year", "region", "naics", "value", "name"],
    )


@pytest.fixture
def national():
    data = pd.DataFrame(
        [(r, c, "", YEAR, p, v) for r, c, p, v in NATIONAL_FACTS],
        columns=["row", "col", "region", "year", "parameter", "value"],
    )
    sets = pd.DataFrame(NATIONAL_SETS, columns=["name", "description", "domain"])
    elements = pd.DataFrame(
        [(s, e, "") for s, names in NATIONAL_ELEMENTS.items() for e in names],
        columns=["set", "name", "description"],
    )
    return AccountTable(data, sets, elements, regularity_check=True)


@pytest.fixture
def state_map():
    return pd.DataFrame({"fips": ["01000", "02000"], "state": STATES})


@pytest.fixture
def raw_data(state_map):
    gdp = _raw(
        [("StateA", "agr", 60.0), ("StateB", "agr", 40.0), ("StateA", "srv", 60.0), ("StateB", "srv", 40.0)],
        "gdp",
    )
    labor = _raw(
        [("StateA", "agr", 25.0), ("StateB", "agr", 17.0), ("StateA", "srv", 38.0), ("StateB", "srv", 24.0)],
        "labor",
    )
    capital = _raw(
        [("StateA", "agr", 30.0), ("StateB", "agr", 25.0), ("StateA", "srv", 20.0), ("StateB", "srv", 14.0)],
        "capital",
    )
    tax = _raw(
        [("StateA", "agr", 3.0), ("StateB", "agr", 2.0), ("StateA", "srv", 2.0), ("StateB", "srv", 1.0)],
        "tax",
    )
    subsidy = _raw([("StateA", "agr", -1.0), ("StateB", "agr", -1.0)], "subsidy")
    pce = _raw(
        [("StateA", "agr", 55.0), ("StateB", "agr", 45.0), ("StateA", "srv", 55.0), ("StateB", "srv", 45.0)],
        "pce",
    )
    sgf = _raw(
        [("StateA", "agr", 3.0), ("StateB", "agr", 7.0), ("StateA", "srv", 3.0), ("StateB", "srv", 7.0)],
        "government_final_demand",
    )
    trade_shares = pd.DataFrame(
        [
            (YEAR, "StateA", "agr", 0.8, "exports"),
            (YEAR, "StateB", "agr", 0.2, "exports"),
            (YEAR, "StateA", "agr", 0.5, "imports"),
            (YEAR, "StateB", "agr", 0.5, "imports"),
        ],
        columns=["year", "region", "naics", "value", "flow"],
    )
    rpc = pd.DataFrame(
        [
            ("StateA", YEAR, "agr", 0.5),
            ("StateB", YEAR, "agr", 0.3),
            ("StateA", YEAR, "srv", 0.7),
            ("StateB", YEAR, "srv", 0.6),
        ],
        columns=["region", "year", "naics", "rpc"],
    )
    return {
        "gdp": gdp,
        "labor": labor,
        "capital": capital,
        "tax": tax,
        "subsidy": subsidy,
        "pce": pce,
        "sgf": sgf,
        "trade_shares": trade_shares,
        "rpc": rpc,
        "state_map": state_map,
    }


@pytest.fixture
def labor_share_table():
    """Solved labor shares that reproduce the national split exactly."""
    return pd.DataFrame(
        [
            (YEAR, "StateA", "agr", 0.45, 0.55),
            (YEAR, "StateB", "agr", (30 / 70 - 0.6 * 0.45) / 0.4, 0.0),
            (YEAR, "StateA", "srv", 0.6, 0.4),
            (YEAR, "StateB", "srv", (0.625 - 0.6 * 0.6) / 0.4, 0.0),
        ],
        columns=["year", "region", "col", "labor_share", "capital_share"],
    ).assign(capital_share=lambda df: 1 - df["labor_share"])


@pytest.fixture
def raw_data_with_labor(raw_data, labor_share_table):
    return dict(raw_data, labor_share=labor_share_table)
