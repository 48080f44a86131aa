"""Tests for the CLI entry point."""

import csv
import json
from unittest.mock import MagicMock

import pytest
from click.testing import CliRunner

from phabreport_cli.auth import Credentials, load_arcrc, resolve_credentials
from phabreport_cli.cli import _build_sink, main
from phabreport_core.config import DEFAULT_CONFIG
from phabreport_core.errors import ConfigError, TransportError
from phabreport_core.report import ReportSummary
from phabreport_sink.csv_sink import CsvSink
from phabreport_sink.jsonl import JsonLinesSink

HOST = "https://phab.example.com/api/"


def _write_arcrc(tmp_path, hosts=None):
    path = tmp_path / ".arcrc"
    path.write_text(json.dumps({"hosts": hosts if hosts is not None else {HOST: {"token": "api-tok"}}}))
    return str(path)


def _patch_run(mocker, summary=None, side_effect=None):
    """Replace the async run with a stub; return the mock for inspection."""
    mock_run = mocker.patch("phabreport_cli.cli._run", new_callable=MagicMock)

    async def fake_run(credentials, sink, params, config):
        if side_effect is not None:
            raise side_effect
        sink.close()
        return summary or ReportSummary(author="me", total=0)

    mock_run.side_effect = fake_run
    return mock_run


class TestCLIValidation:
    def test_missing_output_prints_usage(self):
        result = CliRunner().invoke(main, [])
        assert result.exit_code != 0
        assert "Usage" in result.output

    def test_missing_arcrc_is_usage_error(self, tmp_path, monkeypatch):
        monkeypatch.delenv("PHABREPORT_CONDUIT_URI", raising=False)
        result = CliRunner().invoke(
            main,
            [str(tmp_path / "out.csv"), "--arcrc", str(tmp_path / "nope"), "--config", str(tmp_path / "none.yml")],
        )
        assert result.exit_code == 2
        assert "Credential file not found" in result.output

    def test_bad_param_rejected(self, tmp_path):
        result = CliRunner().invoke(main, [str(tmp_path / "out.csv"), "--param", "novalue"])
        assert result.exit_code != 0
        assert "KEY=VALUE" in result.output


class TestCLIRun:
    def _invoke(self, tmp_path, *args):
        arcrc = _write_arcrc(tmp_path)
        return CliRunner().invoke(
            main,
            [str(tmp_path / "out.csv"), "--arcrc", arcrc, "--config", str(tmp_path / "none.yml"), *args],
        )

    def test_limit_and_filters_forwarded(self, tmp_path, mocker, monkeypatch):
        monkeypatch.delenv("PHABREPORT_CONDUIT_URI", raising=False)
        mock_run = _patch_run(mocker)

        result = self._invoke(tmp_path, "--limit", "2", "--status", "status-closed", "--param", "order=order-created")

        assert result.exit_code == 0, result.output
        credentials, _sink, params, config = mock_run.call_args.args
        assert credentials.host == HOST
        assert credentials.token == "api-tok"
        assert params == {"limit": 2, "status": "status-closed", "order": "order-created"}
        assert config["on_error"] == "halt"

    def test_cli_overrides_reach_config(self, tmp_path, mocker, monkeypatch):
        monkeypatch.delenv("PHABREPORT_CONDUIT_URI", raising=False)
        mock_run = _patch_run(mocker)

        self._invoke(tmp_path, "--on-error", "skip", "--max-concurrency", "3")

        config = mock_run.call_args.args[3]
        assert config["on_error"] == "skip"
        assert config["max_concurrency"] == 3

    def test_transport_error_exits_non_zero(self, tmp_path, mocker, monkeypatch):
        monkeypatch.delenv("PHABREPORT_CONDUIT_URI", raising=False)
        _patch_run(mocker, side_effect=TransportError("differential.querydiffs: HTTP 502"))

        result = self._invoke(tmp_path)

        assert result.exit_code == 1
        assert "HTTP 502" in result.output

    def test_summary_printed(self, tmp_path, mocker, monkeypatch):
        monkeypatch.delenv("PHABREPORT_CONDUIT_URI", raising=False)
        _patch_run(mocker, summary=ReportSummary(author="me", total=0))

        result = self._invoke(tmp_path)

        assert result.exit_code == 0
        assert "Wrote 0 of 0 revision(s)" in result.output

    def test_csv_header_written(self, tmp_path, mocker, monkeypatch):
        monkeypatch.delenv("PHABREPORT_CONDUIT_URI", raising=False)
        _patch_run(mocker)

        self._invoke(tmp_path)

        with open(tmp_path / "out.csv", newline="") as f:
            header = next(csv.reader(f))
        assert header[:3] == ["title", "uri", "firstDiff"]


class TestBuildSink:
    def test_csv_by_default(self, tmp_path):
        sink = _build_sink(str(tmp_path / "out.csv"), "auto", dict(DEFAULT_CONFIG))
        assert isinstance(sink, CsvSink)
        sink.close()

    def test_jsonl_by_extension(self, tmp_path):
        sink = _build_sink(str(tmp_path / "out.jsonl"), "auto", dict(DEFAULT_CONFIG))
        assert isinstance(sink, JsonLinesSink)
        sink.close()

    def test_explicit_format_wins(self, tmp_path):
        sink = _build_sink(str(tmp_path / "out.txt"), "jsonl", dict(DEFAULT_CONFIG))
        assert isinstance(sink, JsonLinesSink)
        sink.close()

    def test_annotate_adds_error_column(self, tmp_path):
        path = tmp_path / "out.csv"
        sink = _build_sink(str(path), "csv", {**DEFAULT_CONFIG, "on_error": "annotate"})
        sink.close()
        assert path.read_text().strip().endswith(",error")


# ---------------------------------------------------------------------------
# auth.py
# ---------------------------------------------------------------------------


class TestLoadArcrc:
    def test_first_host_used_by_default(self, tmp_path):
        path = _write_arcrc(tmp_path, {HOST: {"token": "t1"}, "https://other.example.com/api/": {"token": "t2"}})
        assert load_arcrc(path) == Credentials(host=HOST, token="t1")

    def test_named_host(self, tmp_path):
        other = "https://other.example.com/api/"
        path = _write_arcrc(tmp_path, {HOST: {"token": "t1"}, other: {"token": "t2"}})
        assert load_arcrc(path, host=other).token == "t2"

    def test_bare_host_url_matches_api_key(self, tmp_path):
        path = _write_arcrc(tmp_path)
        assert load_arcrc(path, host="https://phab.example.com").host == HOST

    def test_unknown_host_raises(self, tmp_path):
        path = _write_arcrc(tmp_path)
        with pytest.raises(ConfigError, match="not configured"):
            load_arcrc(path, host="https://nowhere.example.com/api/")

    def test_missing_file_raises(self, tmp_path):
        with pytest.raises(ConfigError, match="not found"):
            load_arcrc(str(tmp_path / "missing"))

    def test_malformed_json_raises(self, tmp_path):
        path = tmp_path / ".arcrc"
        path.write_text("{not json")
        with pytest.raises(ConfigError):
            load_arcrc(str(path))

    def test_no_hosts_raises(self, tmp_path):
        with pytest.raises(ConfigError, match="no configured hosts"):
            load_arcrc(_write_arcrc(tmp_path, {}))

    def test_host_without_token_raises(self, tmp_path):
        with pytest.raises(ConfigError, match="No token"):
            load_arcrc(_write_arcrc(tmp_path, {HOST: {}}))

    def test_repr_hides_token(self):
        assert "secret" not in repr(Credentials(host=HOST, token="secret"))


class TestResolveCredentials:
    def test_env_vars_take_precedence(self, tmp_path, monkeypatch):
        monkeypatch.setenv("PHABREPORT_CONDUIT_URI", "https://env.example.com/api/")
        monkeypatch.setenv("PHABREPORT_CONDUIT_TOKEN", "env-tok")
        creds = resolve_credentials(_write_arcrc(tmp_path))
        assert creds == Credentials(host="https://env.example.com/api/", token="env-tok")

    def test_falls_back_to_arcrc_when_env_incomplete(self, tmp_path, monkeypatch):
        monkeypatch.setenv("PHABREPORT_CONDUIT_URI", "https://env.example.com/api/")
        monkeypatch.delenv("PHABREPORT_CONDUIT_TOKEN", raising=False)
        creds = resolve_credentials(_write_arcrc(tmp_path))
        assert creds.host == HOST

    def test_host_mismatch_ignores_env(self, tmp_path, monkeypatch):
        monkeypatch.setenv("PHABREPORT_CONDUIT_URI", "https://env.example.com/api/")
        monkeypatch.setenv("PHABREPORT_CONDUIT_TOKEN", "env-tok")
        creds = resolve_credentials(_write_arcrc(tmp_path), host=HOST)
        assert creds.token == "api-tok"
