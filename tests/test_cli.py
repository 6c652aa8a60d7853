"""Tests for the keymaster CLI."""
from __future__ import annotations

import textwrap
from unittest import mock

import pytest

from keymaster import cli
from keymaster.errors import KeymasterError

TEAM = textwrap.dedent("""\
    name: core-services
    environments: [dev]
    secrets:
      - name: foo
        generator: {type: alpha, length: 10}
    roles:
      - name: app1
        secrets: [{name: foo}]
        realms:
          - type: k8s
            identifiers: [bravo]
""")

SETTINGS = textwrap.dedent("""\
    vault:
      addr: https://vault:8200
    clusters:
      - name: bravo
        environment: dev
""")


@pytest.fixture
def workspace(tmp_path, monkeypatch):
    monkeypatch.delenv("VAULT_ADDR", raising=False)
    monkeypatch.delenv("VAULT_TOKEN", raising=False)
    (tmp_path / "keymaster.yaml").write_text(SETTINGS)
    (tmp_path / "teams").mkdir()
    (tmp_path / "teams" / "core-services.yaml").write_text(TEAM)
    return tmp_path


def _argv(workspace, *rest):
    return ["--config", str(workspace / "keymaster.yaml"), *rest]


def test_help(capsys):
    assert cli.main(["help"]) == 0
    assert "sync" in capsys.readouterr().out


def test_no_arguments_prints_help(capsys):
    assert cli.main([]) == 0
    assert "usage" in capsys.readouterr().out


def test_syntax_ok(workspace, capsys):
    assert cli.main(_argv(workspace, "syntax", str(workspace / "teams"))) == 0
    out = capsys.readouterr().out
    assert "team core-services, 1 secret(s), 1 role(s)" in out
    assert "[done] 1 manifest(s) valid" in out


def test_syntax_reports_file_and_cause(workspace, capsys):
    bad = workspace / "bad.yaml"
    bad.write_text("name: foo/bar\nenvironments: [dev]\n")
    assert cli.main(_argv(workspace, "syntax", "-f", str(bad))) == 1
    err = capsys.readouterr().err
    assert str(bad) in err
    assert "team names may not contain '/'" in err


def test_syntax_unknown_cluster(workspace, capsys):
    (workspace / "teams" / "core-services.yaml").write_text(TEAM.replace("[bravo]", "[zulu]"))
    assert cli.main(_argv(workspace, "syntax", str(workspace / "teams"))) == 1
    assert "unknown cluster 'zulu'" in capsys.readouterr().err


def test_no_manifests(workspace, capsys):
    assert cli.main(_argv(workspace, "syntax")) == 1
    assert "no manifests given" in capsys.readouterr().err


def test_sync(workspace, client, store, capsys):
    with mock.patch.object(cli, "connect", return_value=store) as connect:
        rc = cli.main(_argv(workspace, "sync", str(workspace / "teams"), "--token", "s.token"))
    assert rc == 0
    connect.assert_called_once_with("https://vault:8200", "s.token")
    assert client.stored("auth/k8s-bravo/role/core-services-app1")["policies"] == [
        "default", "core-services-app1-dev",
    ]
    assert "[done] 1 team(s), 3 change(s)" in capsys.readouterr().out


def test_sync_validates_everything_before_connecting(workspace, capsys):
    (workspace / "teams" / "zz-broken.yaml").write_text("name: broken\n")
    with mock.patch.object(cli, "connect") as connect:
        rc = cli.main(_argv(workspace, "sync", str(workspace / "teams"), "--token", "s.token"))
    assert rc == 1
    connect.assert_not_called()
    assert "zz-broken.yaml" in capsys.readouterr().err


def test_sync_connection_failure(workspace, capsys):
    with mock.patch.object(cli, "connect", side_effect=KeymasterError("Vault authentication failed")):
        rc = cli.main(_argv(workspace, "sync", str(workspace / "teams")))
    assert rc == 1
    assert "error: Vault authentication failed" in capsys.readouterr().err
