"""Tests for the command-line entry point."""
import io

import pytest

from resource_indicators import config, main
from resource_indicators.errors import TokenEndpointError
from resource_indicators.flow import FlowReport, ResourceTokens
from resource_indicators.models import TokenSet


def _report():
    first = TokenSet(access_token="AT1", token_type="Bearer", expires_in=300, resource="res1", issued_at=0, refresh_token="RT1")
    second = TokenSet(access_token="AT2", token_type="Bearer", expires_in=300, resource="res2", issued_at=0)
    return FlowReport(first=ResourceTokens("res1", first), second=ResourceTokens("res2", second))


class StubFlow:
    outcome = None

    def __init__(self, flow_config, key_provider):
        self.flow_config = flow_config

    def run(self):
        if isinstance(self.outcome, BaseException):
            raise self.outcome
        return self.outcome


@pytest.fixture
def stub_flow(monkeypatch):
    monkeypatch.setattr(main, "ResourceIndicatorsFlow", StubFlow)
    monkeypatch.setattr(main, "load_key_provider", lambda: object())
    return StubFlow


def test_build_flow_config_reads_settings():
    flow_config = main.build_flow_config()
    assert flow_config.issuer == config.ISSUER
    assert flow_config.client_id == config.CLIENT_ID
    assert flow_config.resources.values == config.RESOURCES
    assert flow_config.listener.port == config.LOCAL_PORT
    assert flow_config.listener.redirect_path == config.REDIRECT_PATH
    assert flow_config.targets == config.RESOURCES[:2]


def test_print_report():
    out = io.StringIO()
    main.print_report(_report(), out)
    lines = out.getvalue().splitlines()
    assert lines[:5] == [
        "First request, resource: res1",
        "Access Token: AT1",
        "Refresh Token: RT1",
        "Expires: 1970-01-01T00:05:00+00:00",
        "",
    ]
    assert lines[5] == "Second request, resource: res2"
    assert "Refresh Token: (none)" in lines


def test_main_success(stub_flow, monkeypatch, capsys):
    monkeypatch.setattr(stub_flow, "outcome", _report())
    assert main.main() == 0
    out = capsys.readouterr().out
    assert "Access Token: AT1" in out
    assert "Access Token: AT2" in out


def test_main_reports_errors(stub_flow, monkeypatch, capsys):
    monkeypatch.setattr(stub_flow, "outcome", TokenEndpointError("invalid_target", "Unknown resource"))
    assert main.main() == 1
    err = capsys.readouterr().err
    assert "Error:" in err
    assert "TokenEndpointError" in err
    assert "invalid_target" in err


def test_main_interrupted(stub_flow, monkeypatch):
    monkeypatch.setattr(stub_flow, "outcome", KeyboardInterrupt())
    assert main.main() == 130


def test_print_report_unknown_expiry():
    report = _report()
    first = TokenSet(access_token="AT1", token_type="Bearer", expires_in=None, resource="res1", issued_at=0)
    report = FlowReport(first=ResourceTokens("res1", first), second=report.second)
    out = io.StringIO()
    main.print_report(report, out)
    lines = out.getvalue().splitlines()
    assert lines[3] == "Expires: (unknown)"
    assert lines[8] == "Expires: 1970-01-01T00:05:00+00:00"
