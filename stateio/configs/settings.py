"""
Configuration for the state input-output disaggregation.
Authors: Dennies Bor, Ed Oughton
"""

import os
import sys
import logging
from pathlib import Path

APP_NAME = "stateio"
ROOT_DIR = Path(__file__).resolve().parent.parent

# Data directories
DATA_DIR = Path(os.getenv("STATEIO_DATA_DIR", ROOT_DIR.parent / "data"))
MAPS_DIR = ROOT_DIR / "data" / "maps"
DEFAULT_DATA_DIR = DATA_DIR

STATE_FIPS_FILE = MAPS_DIR / "state_fips.csv"
SGF_STATES_FILE = MAPS_DIR / "sgf_states.csv"

LOG_LEVEL = getattr(logging, os.getenv("STATEIO_LOG_LEVEL", "INFO").upper(), logging.INFO)

# Numerical tolerances
NOISE_TOLERANCE = 1e-6
FREIGHT_TOLERANCE = 1e-5
BALANCE_TOLERANCE = 1e-4

# Labor share cleaning and solver
OUTLIER_THRESHOLD = 0.75
LOWER_BOUND_FRACTION = 0.25
LABOR_SHARE_SOLVER = os.getenv("STATEIO_SOLVER", "ipopt").lower()
IPOPT_EXEC = os.getenv("IPOPT_EXEC", "ipopt")
SOLVER_MAX_ITER = 3000
SOLVER_TIME_LIMIT = 600.0
SOLVER_TOLERANCE = 1e-8

IPOPT_OPTIONS = {
    "max_iter": SOLVER_MAX_ITER,
    "max_cpu_time": SOLVER_TIME_LIMIT,
    "tol": SOLVER_TOLERANCE,
    "mu_strategy": "adaptive",
    "print_level": 0,
}

# Trade shares
AGRICULTURE_CODE = "111CA"
TRADE_BASE_YEAR = 1997

# Label used by disaggregate_by_shares when a national entry has no share data
FALLBACK_SHARE_LABEL = "uniform_fallback"

# FAF benchmark years for the reprocessed (pre-2017) file
FAF_BENCHMARK_YEARS = {
    1997: 1997,
    1998: 1997,
    1999: 1997,
    2000: 2002,
    2001: 2002,
    2002: 2002,
    2003: 2002,
    2004: 2002,
    2005: 2007,
    2006: 2007,
    2007: 2007,
    2008: 2007,
    2009: 2007,
    2010: 2012,
    2011: 2012,
    2012: 2012,
    2013: 2012,
    2014: 2012,
    2015: 2017,
    2016: 2017,
}
FAF_KEEP_COLUMNS = [
    "fr_orig",
    "dms_origst",
    "dms_destst",
    "fr_dest",
    "trade_type",
    "sctg2",
]
FAF_VALUE_REGEX = r"^value_(\d{4})$"

SUPPRESSED_MARKERS = ["(NA)", "(D)", "(NM)", "(L)", "(T)"]

# Default raw data layout relative to DATA_DIR. Override with a JSON file on the CLI.
DATA_SOURCES = {
    "maps": {
        "state_map": None,
        "gdp_map": "maps/industry_codes.csv",
        "pce_map": "maps/pce_map.csv",
        "sgf_map": "maps/sgf_map.csv",
        "sgf_states_map": None,
        "trade_map": "maps/usatrade_map.csv",
        "faf_map": "maps/faf_map.csv",
    },
    "state_gdp": {
        "base_directory": "SAGDP",
        "gdp": "SAGDP2N__ALL_AREAS_1997_2023.csv",
        "labor": "SAGDP4N__ALL_AREAS_1997_2023.csv",
        "subsidy": "SAGDP5N__ALL_AREAS_1997_2023.csv",
        "tax": "SAGDP6N__ALL_AREAS_1997_2023.csv",
        "capital": "SAGDP7N__ALL_AREAS_1997_2023.csv",
    },
    "personal_consumption": {
        "base_directory": "SAPCE",
        "pce": "SAPCE1__ALL_AREAS_1997_2023.csv",
    },
    "state_finances": {
        "base_directory": "SGF",
        "pattern": r"^(?P<year>\d{2})(state|data)35\.txt$",
        "replacement": {"year": {"2021": "2020", "2022": "2020", "2023": "2020"}},
    },
    "trade": {
        "base_directory": "USATradeOnline",
        "agriculture_code": AGRICULTURE_CODE,
        "exports": {
            "path": "State Exports by NAICS Commodities.csv",
            "value_column": "Total Exports Value ($US)",
        },
        "imports": {
            "path": "State Imports by NAICS Commodities.csv",
            "value_column": "Customs Value (Gen) ($US)",
        },
        "ag_time_series": {
            "path": "commodity_detail_by_state_cy.xlsx",
            "sheet": "Total exports",
            "range": "A3:AA55",
            "replacement": {},
        },
    },
    "freight_analysis_framework": {
        "base_directory": "FAF",
        "state": "FAF5.6.1_State.csv",
        "reprocessed_state": "FAF5.6.1_Reprocessed_1997-2012_State.csv",
        "max_year": 2023,
        "adjusted_demand": {"322": 0.3, "323": 0.3},
    },
}


def get_solver_config():
    """Get labor share solver parameters as dictionary."""
    return {
        "backend": LABOR_SHARE_SOLVER,
        "max_iter": SOLVER_MAX_ITER,
        "time_limit": SOLVER_TIME_LIMIT,
        "tolerance": SOLVER_TOLERANCE,
    }


def get_data_dir(subdir=None):
    """Get data directory path, creating if needed."""
    data_dir = DATA_DIR / subdir if subdir else DATA_DIR
    data_dir.mkdir(parents=True, exist_ok=True)
    return data_dir


def setup_logger(name=APP_NAME, log_file=None, level=LOG_LEVEL):
    """Setup logger with console and optional file output."""
    logger = logging.getLogger(name)
    logger.setLevel(level)

    for handler in logger.handlers[:]:
        logger.removeHandler(handler)

    formatter = logging.Formatter(
        "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
    )

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(level)
    console_handler.setFormatter(formatter)
    logger.addHandler(console_handler)

    if log_file:
        log_path = Path(log_file)
        if not log_path.parent.exists():
            log_path.parent.mkdir(parents=True, exist_ok=True)

        file_handler = logging.FileHandler(log_file)
        file_handler.setLevel(level)
        file_handler.setFormatter(formatter)
        logger.addHandler(file_handler)

    return logger
