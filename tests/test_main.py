"""Tests for the command-line interface and input validation."""
import csv
import json
from decimal import Decimal

import click
import pytest
from click.testing import CliRunner

from loan_forecast.data_models import (
    PENALTY_ON_PRINCIPAL,
    PENALTY_ON_PRINCIPAL_WITH_INTEREST,
    ExtraPayment,
    FullPrepayment,
)
from loan_forecast.main import (
    build_config_from_options,
    cli,
    parse_amount,
    parse_fee_strings,
    parse_penalty_strings,
    parse_scenario_strings,
)

BASE_ARGS = ["-p", "100k", "-t", "12", "-s", "2024-01-15"]


@pytest.fixture
def runner():
    return CliRunner()


# --- Parsing ---


@pytest.mark.parametrize(
    "value, expected",
    [("500000", "500000"), ("500k", "500000"), ("1.5m", "1500000"), ("12,000", "12000")],
)
def test_parse_amount(value, expected):
    assert parse_amount(value) == Decimal(expected)


def test_parse_amount_rejects_garbage():
    with pytest.raises(click.BadParameter):
        parse_amount("lots")


def test_parse_fee_strings_keeps_order():
    fees = parse_fee_strings(["processing:500", "legal:1k"])
    assert [(f.name, f.amount) for f in fees] == [("processing", Decimal("500")), ("legal", Decimal("1000"))]


def test_parse_scenario_strings():
    scenarios = parse_scenario_strings(["extra:2:3:10", "full:6"])
    assert scenarios == (
        ExtraPayment(after_installment=2, count=3, percent=Decimal("10")),
        FullPrepayment(after_installment=6),
    )


@pytest.mark.parametrize("value", ["full", "extra:1:2", "partial:3", "extra:1:2:-5", "full:-1"])
def test_parse_scenario_strings_rejects_malformed(value):
    with pytest.raises(click.BadParameter):
        parse_scenario_strings([value])


def test_parse_penalty_strings():
    penalties = parse_penalty_strings(["5:3:2", "6:1:0.5:principal_with_interest"])
    assert penalties[5].days_late == 3
    assert penalties[5].rate_percent == Decimal("2")
    assert penalties[5].base == PENALTY_ON_PRINCIPAL
    assert penalties[6].base == PENALTY_ON_PRINCIPAL_WITH_INTEREST


@pytest.mark.parametrize("values", [["5:3"], ["0:1:1"], ["5:3:2:everything"], ["5:3:2", "5:1:1"]])
def test_parse_penalty_strings_rejects_invalid(values):
    with pytest.raises(click.BadParameter):
        parse_penalty_strings(values)


def test_build_config_defaults():
    config = build_config_from_options("100k", 12, start_date="2024-01-15")
    assert config.financed_amount == Decimal("100000")
    assert config.apply_interest is True
    assert config.rate_mode == "auto"
    assert config.insurance.enabled is False
    assert config.penalties == {}


def test_build_config_enables_insurance_when_rate_given():
    config = build_config_from_options("100k", 12, insurance_rate="0.5")
    assert config.insurance.enabled is True
    assert config.insurance.annual_rate == Decimal("0.5")


@pytest.mark.parametrize(
    "kwargs",
    [
        {"tenure": 0},
        {"tenure": -3},
        {"tenure": 1201},
        {"principal": "-100"},
        {"down_payment": "200k"},
        {"rate": "-1"},
        {"rate_mode": "sometimes"},
        {"interest_type": "compound"},
        {"start_date": "yesterday"},
        {"insurance_rate": "-0.5"},
    ],
)
def test_build_config_rejects_invalid_input(kwargs):
    options = {"principal": "100k", "tenure": 12}
    options.update(kwargs)
    with pytest.raises(click.BadParameter):
        build_config_from_options(**options)


# --- Commands ---


def test_schedule_command_prints_summary_and_table(runner):
    result = runner.invoke(cli, ["schedule"] + BASE_ARGS)
    assert result.exit_code == 0, result.output
    assert "Summary" in result.output
    assert "8560.75" in result.output
    assert "2025-01-15" in result.output


def test_schedule_command_reports_early_closure(runner):
    result = runner.invoke(cli, ["schedule"] + BASE_ARGS + ["--scenario", "full:3"])
    assert result.exit_code == 0, result.output
    assert "Full Prepayment after #3" in result.output
    assert "Loan closed early in 4 month(s)" in result.output


def test_schedule_command_exports_json(runner, tmp_path):
    path = tmp_path / "schedule.json"
    result = runner.invoke(
        cli,
        ["schedule"] + BASE_ARGS + ["--penalty", "5:3:2", "--fee", "processing:500", "--output", str(path)],
    )
    assert result.exit_code == 0, result.output

    data = json.loads(path.read_text(encoding="utf-8"))
    assert len(data["schedule"]) == 12
    assert data["schedule"][0]["fees"] == 500.0
    assert data["schedule"][4]["penalty_days_late"] == 3
    assert data["summary"]["total_penalty"] > 0


def test_schedule_command_exports_csv(runner, tmp_path):
    path = tmp_path / "schedule.csv"
    result = runner.invoke(cli, ["schedule"] + BASE_ARGS + ["--scenario", "full:3", "--output", str(path)])
    assert result.exit_code == 0, result.output

    with path.open(newline="", encoding="utf-8") as f:
        rows = list(csv.DictReader(f))
    assert len(rows) == 5
    assert rows[-1]["note"] == "Loan closed early in 4 month(s)"
    assert rows[-1]["principal"] == ""


def test_schedule_command_rejects_unknown_extension(runner, tmp_path):
    result = runner.invoke(cli, ["schedule"] + BASE_ARGS + ["--output", str(tmp_path / "s.txt")])
    assert result.exit_code == 2


def test_schedule_command_rejects_zero_tenure(runner):
    result = runner.invoke(cli, ["schedule", "-p", "100k", "-t", "0"])
    assert result.exit_code == 2
    assert "Tenure must be at least one month" in result.output


def test_summary_command_uses_manual_rate(runner):
    result = runner.invoke(cli, ["summary"] + BASE_ARGS + ["--rate-mode", "manual", "--rate", "7.5"])
    assert result.exit_code == 0, result.output
    assert "7.50%" in result.output


def test_summary_command_exports_json(runner, tmp_path):
    path = tmp_path / "summary.json"
    result = runner.invoke(cli, ["summary"] + BASE_ARGS + ["--no-interest", "--output", str(path)])
    assert result.exit_code == 0, result.output
    summary = json.loads(path.read_text(encoding="utf-8"))["summary"]
    assert summary["total_interest"] == 0
    assert summary["baseline_emi"] == pytest.approx(100000 / 12)


def test_report_command_without_api_key(runner, monkeypatch):
    monkeypatch.delenv("OPENAI_API_KEY", raising=False)
    result = runner.invoke(cli, ["report"] + BASE_ARGS + ["--penalty", "6:2:1"])
    assert result.exit_code == 0, result.output
    assert "Total Principal" in result.output
    assert "#6" in result.output


def test_build_config_accepts_maximum_tenure():
    config = build_config_from_options("100k", 1200, start_date="2024-01-15")
    assert config.tenure_months == 1200


def test_schedule_command_rejects_excessive_tenure(runner):
    result = runner.invoke(cli, ["schedule", "-p", "100k", "-t", "10000000"])
    assert result.exit_code == 2
    assert "Tenure must not exceed 1200 months" in result.output
