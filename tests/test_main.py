"""Tests for the command line entry point."""

import pandas as pd
import pytest

from stateio.configs import LABOR_SHARE_SOLVER, BALANCE_TOLERANCE
from stateio.main import build_parser, essential_national_table, main
from stateio.models.account_table import AccountTable
from stateio.preprocess.p_state_table import create_state_table


@pytest.fixture
def saved_state_table(tmp_path, national, raw_data_with_labor):
    state_table = create_state_table(national, raw_data_with_labor)
    return state_table.save(tmp_path / "state")


class TestParser:
    def test_build_defaults(self) -> None:
        args = build_parser().parse_args(["build", "--national", "nat", "--output", "out"])
        assert args.command == "build"
        assert args.solver == LABOR_SHARE_SOLVER
        assert args.stages is None
        assert args.format == "csv"
        assert args.tolerance == BALANCE_TOLERANCE

    def test_stage_names_checked(self) -> None:
        with pytest.raises(SystemExit):
            build_parser().parse_args(
                ["build", "--national", "nat", "--output", "out", "--stages", "teleport"]
            )

    def test_command_required(self) -> None:
        with pytest.raises(SystemExit):
            build_parser().parse_args([])


class TestEssentialFiles:
    def test_missing_files_listed(self, tmp_path) -> None:
        with pytest.raises(FileNotFoundError) as excinfo:
            essential_national_table(tmp_path)
        assert "sets.csv" in str(excinfo.value)
        assert "data.csv" in str(excinfo.value)

    def test_saved_table_passes(self, tmp_path, national) -> None:
        national.save(tmp_path, fmt="parquet")
        assert essential_national_table(tmp_path)


class TestMain:
    def test_validate_balanced_table(self, saved_state_table, tmp_path) -> None:
        report = tmp_path / "report.csv"
        assert main(["validate", "--table", str(saved_state_table), "--report", str(report)]) == 0
        assert pd.read_csv(report)["n_violations"].sum() == 0

    def test_validate_unbalanced_table(self, saved_state_table, tmp_path) -> None:
        table = AccountTable.load(saved_state_table)
        data = table.data
        supply = data["parameter"] == "intermediate_supply"
        data.loc[supply, "value"] = data.loc[supply, "value"] * 1.1
        broken = AccountTable(data, table.sets, table.elements).save(tmp_path / "broken")

        assert main(["validate", "--table", str(broken)]) == 1

    def test_missing_national_directory(self, tmp_path) -> None:
        code = main(["build", "--national", str(tmp_path / "nope"), "--output", str(tmp_path / "out")])
        assert code == 1
        assert not (tmp_path / "out").exists()

    def test_log_file(self, saved_state_table, tmp_path) -> None:
        log_file = tmp_path / "logs" / "validate.log"
        main(["validate", "--table", str(saved_state_table), "--log-file", str(log_file)])
        assert log_file.exists()
        assert "max |imbalance|" in log_file.read_text()
