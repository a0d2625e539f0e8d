"""
Configuration package for the state disaggregation.

Provides utilities for data directory management and custom logging.
"""

from .settings import (
    APP_NAME,
    DATA_DIR,
    DEFAULT_DATA_DIR,
    MAPS_DIR,
    STATE_FIPS_FILE,
    SGF_STATES_FILE,
    NOISE_TOLERANCE,
    FREIGHT_TOLERANCE,
    BALANCE_TOLERANCE,
    OUTLIER_THRESHOLD,
    LOWER_BOUND_FRACTION,
    LABOR_SHARE_SOLVER,
    IPOPT_EXEC,
    IPOPT_OPTIONS,
    AGRICULTURE_CODE,
    TRADE_BASE_YEAR,
    FALLBACK_SHARE_LABEL,
    FAF_BENCHMARK_YEARS,
    FAF_KEEP_COLUMNS,
    FAF_VALUE_REGEX,
    SUPPRESSED_MARKERS,
    DATA_SOURCES,
    get_solver_config,
    get_data_dir,
    setup_logger,
)

__all__ = [
    "APP_NAME",
    "DATA_DIR",
    "DEFAULT_DATA_DIR",
    "MAPS_DIR",
    "STATE_FIPS_FILE",
    "SGF_STATES_FILE",
    "NOISE_TOLERANCE",
    "FREIGHT_TOLERANCE",
    "BALANCE_TOLERANCE",
    "OUTLIER_THRESHOLD",
    "LOWER_BOUND_FRACTION",
    "LABOR_SHARE_SOLVER",
    "IPOPT_EXEC",
    "IPOPT_OPTIONS",
    "AGRICULTURE_CODE",
    "TRADE_BASE_YEAR",
    "FALLBACK_SHARE_LABEL",
    "FAF_BENCHMARK_YEARS",
    "FAF_KEEP_COLUMNS",
    "FAF_VALUE_REGEX",
    "SUPPRESSED_MARKERS",
    "DATA_SOURCES",
    "get_solver_config",
    "get_data_dir",
    "setup_logger",
]
