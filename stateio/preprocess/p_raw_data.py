"""
Wire the configured source files to the adapters.

``sources`` follows the layout of configs.DATA_SOURCES: one entry per source
family with a ``base_directory`` relative to the data directory and file
names relative to that. The pipeline only ever sees the loaded tables.
"""

from pathlib import Path

from stateio.configs import setup_logger, DATA_DIR, DATA_SOURCES, AGRICULTURE_CODE
from stateio.preprocess.p_maps import (
    load_state_fips,
    load_sgf_states,
    load_industry_codes,
    load_pce_map,
    load_sgf_map,
    load_faf_map,
    load_usatrade_map,
)
from stateio.preprocess.p_state_gdp import load_state_gdp
from stateio.preprocess.p_pce import load_pce_data
from stateio.preprocess.p_state_finances import load_state_finances
from stateio.preprocess.p_trade import (
    load_usa_raw_trade_data,
    load_usda_agricultural_flow,
    trade_shares,
)
from stateio.preprocess.p_freight import load_faf_data, regional_purchase_coefficients

logger = setup_logger("RawData")

MAP_LOADERS = {
    "state_map": load_state_fips,
    "gdp_map": load_industry_codes,
    "pce_map": load_pce_map,
    "sgf_map": load_sgf_map,
    "sgf_states_map": load_sgf_states,
    "trade_map": load_usatrade_map,
    "faf_map": load_faf_map,
}

# Maps shipped with the package; every other map needs a path
BUNDLED_MAPS = ("state_map", "sgf_states_map")

GSP_TABLES = ("gdp", "labor", "capital", "tax", "subsidy")


def load_map_data(paths=None, data_dir=DATA_DIR):
    """
    Load every mapping table.

    Parameters
    ----------
    paths : dict, optional
        Map name to file path relative to ``data_dir``. ``None`` selects the
        bundled map for state_map and sgf_states_map.
    data_dir : str or Path
        Base directory for relative paths.

    Returns
    -------
    dict
        Map name to DataFrame.
    """
    paths = DATA_SOURCES["maps"] if paths is None else paths
    data_dir = Path(data_dir)

    maps = {}
    for name, loader in MAP_LOADERS.items():
        path = paths.get(name)
        if path is None:
            if name not in BUNDLED_MAPS:
                raise ValueError(f"No path configured for map '{name}'")
            maps[name] = loader()
        else:
            maps[name] = loader(data_dir / path)
        logger.debug(f"Loaded map {name}: {len(maps[name])} rows")
    return maps


def load_gsp_data(sources, data_dir, maps):
    gsp = sources["state_gdp"]
    directory = Path(data_dir) / gsp["base_directory"]
    return {
        name: load_state_gdp(directory / gsp[name], name, maps["gdp_map"], maps["state_map"])
        for name in GSP_TABLES
    }


def load_trade_shares(sources, data_dir, maps):
    trade = sources["trade"]
    directory = Path(data_dir) / trade["base_directory"]
    agriculture_code = trade.get("agriculture_code", AGRICULTURE_CODE)

    flows = {}
    for flow in ("exports", "imports"):
        flows[flow] = load_usa_raw_trade_data(
            directory / trade[flow]["path"],
            flow,
            maps["trade_map"],
            value_column=trade[flow].get("value_column"),
            state_fips=maps["state_map"],
        )

    ag = trade["ag_time_series"]
    usda = load_usda_agricultural_flow(
        directory / ag["path"],
        ag["sheet"],
        ag["range"],
        agriculture_code=agriculture_code,
        flow="exports",
        replacement=ag.get("replacement"),
    )
    return trade_shares(flows["exports"], flows["imports"], usda, agriculture_code)


def load_rpc(national, sources, data_dir, maps):
    faf = sources["freight_analysis_framework"]
    directory = Path(data_dir) / faf["base_directory"]
    demand = load_faf_data(
        directory / faf["state"],
        directory / faf["reprocessed_state"],
        maps["faf_map"],
        faf["max_year"],
        state_fips=maps["state_map"],
    )
    return regional_purchase_coefficients(national, demand, faf.get("adjusted_demand"))


def load_raw_data(national, sources=None, data_dir=DATA_DIR, maps=None):
    """
    Load and normalize every raw source the pipeline consumes.

    Returns
    -------
    dict
        Keys gdp, labor, capital, tax, subsidy, pce, sgf, trade_shares, rpc
        and state_map.
    """
    sources = DATA_SOURCES if sources is None else sources
    if maps is None:
        maps = load_map_data(sources.get("maps"), data_dir)
    data_dir = Path(data_dir)

    raw_data = load_gsp_data(sources, data_dir, maps)

    pce = sources["personal_consumption"]
    raw_data["pce"] = load_pce_data(
        data_dir / pce["base_directory"] / pce["pce"], maps["pce_map"], "pce", maps["state_map"]
    )

    sgf = sources["state_finances"]
    raw_data["sgf"] = load_state_finances(
        sgf["pattern"],
        data_dir / sgf["base_directory"],
        maps["sgf_map"],
        maps["sgf_states_map"],
        sgf.get("replacement"),
    )

    raw_data["trade_shares"] = load_trade_shares(sources, data_dir, maps)
    raw_data["rpc"] = load_rpc(national, sources, data_dir, maps)
    raw_data["state_map"] = maps["state_map"]

    logger.info(f"Loaded raw data: {', '.join(sorted(raw_data))}")
    return raw_data
