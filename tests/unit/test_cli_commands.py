"""Unit tests for reqgraph CLI helpers."""

import click
import pytest

from reqgraph.cli.commands import _cli_error_handler, _parse_assignments, _parse_value
from reqgraph.core.errors import NotFoundError


class TestParseValue:
    @pytest.mark.parametrize(
        "raw,expected",
        [
            ("3", 3),
            ("2.5", 2.5),
            ("true", True),
            ("[a, b]", ["a", "b"]),
            ("Battery pack", "Battery pack"),
            ("null", None),
        ],
    )
    def test_yaml_values(self, raw, expected):
        assert _parse_value(raw) == expected

    def test_dates_stay_text(self):
        assert _parse_value("2025-01-31") == "2025-01-31"

    def test_empty_value_is_empty_string(self):
        assert _parse_value("") == ""

    def test_unparseable_value_is_kept(self):
        assert _parse_value("[unclosed") == "[unclosed"


class TestParseAssignments:
    def test_splits_on_first_equals(self):
        assert _parse_assignments(("text=a=b", " status =open")) == {"text": "a=b", "status": "open"}

    @pytest.mark.parametrize("bad", ["novalue", "=3"])
    def test_rejects_malformed(self, bad):
        with pytest.raises(click.BadParameter):
            _parse_assignments((bad,))


class TestCliErrorHandler:
    def test_known_errors_exit_with_message(self, capsys):
        @_cli_error_handler
        def failing():
            raise NotFoundError("Element not found: X")

        with pytest.raises(SystemExit) as exc_info:
            failing()

        assert exc_info.value.code == 1
        assert "Error: Element not found: X" in capsys.readouterr().err

    def test_unexpected_errors_include_type(self, capsys):
        @_cli_error_handler
        def failing():
            raise RuntimeError("boom")

        with pytest.raises(SystemExit):
            failing()

        assert "Unexpected error: RuntimeError: boom" in capsys.readouterr().err

    def test_abort(self, capsys):
        @_cli_error_handler
        def aborting():
            raise click.Abort()

        with pytest.raises(SystemExit):
            aborting()

        assert "Aborted." in capsys.readouterr().out

    def test_return_value_passes_through(self):
        assert _cli_error_handler(lambda: 42)() == 42
