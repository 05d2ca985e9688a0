"""Unit tests for CLI argument parsing and the offline rates command."""
from __future__ import annotations

import sys

import pytest

from orbit_yield.cli import build_parser, main


class TestBuildParser:
    def test_serve_command(self) -> None:
        args = build_parser().parse_args(["serve", "--port", "9000"])
        assert args.command == "serve"
        assert args.port == 9000
        assert args.host is None

    def test_opportunities_command(self) -> None:
        args = build_parser().parse_args(
            ["opportunities", "--chain", "ethereum", "--min-apy", "1000", "--sort-by", "apy"]
        )
        assert args.command == "opportunities"
        assert args.chain == "ethereum"
        assert args.min_apy == 1000
        assert args.sort_by == "apy"
        assert args.sort_order == "desc"

    def test_invalid_sort_field_rejected(self) -> None:
        with pytest.raises(SystemExit):
            build_parser().parse_args(["opportunities", "--sort-by", "color"])

    def test_portfolio_command(self) -> None:
        args = build_parser().parse_args(["portfolio", "0xabc"])
        assert args.command == "portfolio"
        assert args.address == "0xabc"

    def test_rates_command(self) -> None:
        args = build_parser().parse_args(["rates", "apr-to-apy", "10", "--frequency", "12"])
        assert args.rates_command == "apr-to-apy"
        assert args.value == 10.0
        assert args.frequency == 12

    def test_config_flag(self) -> None:
        args = build_parser().parse_args(["--config", "/tmp/c.yaml", "serve"])
        assert args.config == "/tmp/c.yaml"

    def test_log_level_flag(self) -> None:
        args = build_parser().parse_args(["--log-level", "DEBUG", "serve"])
        assert args.log_level == "DEBUG"

    def test_no_command(self) -> None:
        args = build_parser().parse_args([])
        assert args.command is None


class TestRatesCommand:
    def _run(self, monkeypatch: pytest.MonkeyPatch, *argv: str) -> None:
        monkeypatch.setattr(sys, "argv", ["orbit-yield", *argv])
        main()

    def test_apr_to_apy(self, monkeypatch: pytest.MonkeyPatch, capsys: pytest.CaptureFixture) -> None:
        self._run(monkeypatch, "rates", "apr-to-apy", "12", "--frequency", "12")
        assert capsys.readouterr().out.strip() == "12.682503"

    def test_earnings_zero_days(
        self, monkeypatch: pytest.MonkeyPatch, capsys: pytest.CaptureFixture
    ) -> None:
        self._run(monkeypatch, "rates", "earnings", "1000", "10", "0")
        assert capsys.readouterr().out.strip() == "0.000000"

    def test_negative_rate_exits_with_error(
        self, monkeypatch: pytest.MonkeyPatch, capsys: pytest.CaptureFixture
    ) -> None:
        with pytest.raises(SystemExit) as exc:
            self._run(monkeypatch, "rates", "apy-to-apr", "-5")
        assert exc.value.code == 2
        assert "InvalidArgument" in capsys.readouterr().err
