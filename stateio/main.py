#!/usr/bin/env python3
"""
State input-output tables - main orchestrator script

    python -m stateio.main build --national DIR --output DIR [--sources FILE]
    python -m stateio.main validate --table DIR
"""
import argparse
import json
import sys
import time
from pathlib import Path

from stateio.configs import (
    setup_logger,
    DATA_DIR,
    DATA_SOURCES,
    BALANCE_TOLERANCE,
    LABOR_SHARE_SOLVER,
)
from stateio.models.account_table import AccountTable
from stateio.models.aggregates import balance_report
from stateio.models.exceptions import StateIOError
from stateio.preprocess.p_raw_data import load_map_data, load_raw_data
from stateio.preprocess.p_state_table import create_state_table, STAGE_NAMES

logger = setup_logger("StateIO Pipeline")


def essential_national_table(directory: Path) -> bool:
    files = [directory / "sets.csv", directory / "elements.csv"]
    missing = [f for f in files if not f.exists()]
    if not (directory / "data.csv").exists() and not (directory / "data.parquet").exists():
        missing.append(directory / "data.csv")
    if missing:
        raise FileNotFoundError(
            "Missing national table files:\n" + "\n".join([f"  {f}" for f in missing])
        )
    return True


def load_sources(path=None):
    """Data source layout from a JSON file, or the defaults from configs."""
    if path is None:
        return DATA_SOURCES
    with open(path) as f:
        sources = json.load(f)
    logger.info(f"Loaded data sources from {path}")
    return sources


def run_build(args):
    start = time.time()
    national_dir = Path(args.national)
    essential_national_table(national_dir)

    national = AccountTable.load(national_dir, regularity_check=True)
    logger.info(f"National table: {len(national):,} rows, years {national.years}")

    sources = load_sources(args.sources)
    data_dir = Path(args.data_dir)
    maps = load_map_data(sources.get("maps"), data_dir)
    raw_data = load_raw_data(national, sources, data_dir, maps)

    state_table = create_state_table(
        national, raw_data, solver=args.solver, stages=args.stages, progress=True
    )

    output = Path(args.output)
    state_table.save(output, fmt=args.format)

    report = balance_report(state_table, tolerance=args.tolerance)
    report.to_csv(output / "balance_report.csv", index=False)
    logger.info(f"✅ Built state table in {time.time() - start:.1f}s -> {output}")


def run_validate(args):
    table = AccountTable.load(Path(args.table), regularity_check=True)
    report = balance_report(table, tolerance=args.tolerance)

    violations = int(report["n_violations"].sum())
    worst = report.groupby("identity")["max_abs"].max()
    for identity, value in worst.items():
        logger.info(f"{identity}: max |imbalance| {value:.3g}")

    if args.report:
        report.to_csv(args.report, index=False)
        logger.info(f"Wrote balance report to {args.report}")
    return violations


def build_parser():
    parser = argparse.ArgumentParser(description="State input-output table builder")
    sub = parser.add_subparsers(dest="command", required=True)

    build = sub.add_parser("build", help="Disaggregate a national table into states")
    build.add_argument("--national", required=True, help="Directory with the national table")
    build.add_argument("--output", required=True, help="Directory for the state table")
    build.add_argument("--sources", default=None, help="JSON file with the data source layout")
    build.add_argument("--data-dir", default=str(DATA_DIR), help="Base directory of the raw data")
    build.add_argument(
        "--solver",
        choices=["ipopt", "scipy"],
        default=LABOR_SHARE_SOLVER,
        help="Labor share solver backend",
    )
    build.add_argument(
        "--stages", nargs="+", choices=STAGE_NAMES, default=None, help="Run only these stages"
    )
    build.add_argument("--format", choices=["csv", "parquet"], default="csv")
    build.add_argument("--tolerance", type=float, default=BALANCE_TOLERANCE)
    build.add_argument("--log-file", default=None, help="Also log to this file")

    validate = sub.add_parser("validate", help="Check a saved state table")
    validate.add_argument("--table", required=True, help="Directory with a saved table")
    validate.add_argument("--tolerance", type=float, default=BALANCE_TOLERANCE)
    validate.add_argument("--report", default=None, help="Write the balance report to this CSV")
    validate.add_argument("--log-file", default=None, help="Also log to this file")

    return parser


def main(argv=None):
    args = build_parser().parse_args(argv)
    if args.log_file:
        # Same named logger, now also writing to the file
        setup_logger("StateIO Pipeline", log_file=args.log_file)

    try:
        if args.command == "build":
            run_build(args)
        elif args.command == "validate":
            violations = run_validate(args)
            if violations:
                logger.warning(f"{violations} cells exceed tolerance {args.tolerance:g}")
                return 1
    except (FileNotFoundError, StateIOError) as e:
        logger.error(str(e))
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
