"""Tests for settings loading and manifest discovery."""
from __future__ import annotations

import pytest

from keymaster.config import deep_get, load_manifests, load_settings
from keymaster.errors import ConfigLoadError, ValidationError

SETTINGS = """\
vault:
  addr: https://vault.from-file:8200
  pki_role: edge
tls:
  host_ca_cert: HOST-CA
  ip_restriction: true
clusters:
  - name: bravo
    apiserver: https://kube-bravo:6443
    environment: prod
    bound_cidrs: [10.0.0.1]
"""


@pytest.fixture(autouse=True)
def _clean_env(monkeypatch):
    monkeypatch.delenv("VAULT_ADDR", raising=False)
    monkeypatch.delenv("VAULT_TOKEN", raising=False)


def test_deep_get():
    d = {"vault": {"addr": "x"}}
    assert deep_get(d, "vault.addr") == "x"
    assert deep_get(d, "vault.missing", "dflt") == "dflt"
    assert deep_get(d, "vault.addr.deeper") is None


def test_missing_settings_file_gives_defaults(tmp_path):
    settings = load_settings(tmp_path / "nope.yaml")
    assert settings.vault_addr == ""
    assert settings.pki_role == "keymaster"
    assert settings.ip_restriction is False
    assert settings.clusters == []


def test_settings_from_file(tmp_path):
    path = tmp_path / "keymaster.yaml"
    path.write_text(SETTINGS)
    settings = load_settings(path)

    assert settings.vault_addr == "https://vault.from-file:8200"
    assert settings.pki_role == "edge"
    assert settings.host_ca_cert == "HOST-CA"
    assert settings.ip_restriction is True
    registry = settings.cluster_registry()
    assert registry.get("bravo").api_server_url == "https://kube-bravo:6443"
    assert registry.get("bravo").bound_cidrs == ["10.0.0.1"]


def test_precedence(tmp_path, monkeypatch):
    path = tmp_path / "keymaster.yaml"
    path.write_text(SETTINGS)
    monkeypatch.setenv("VAULT_ADDR", "https://vault.from-env:8200")
    monkeypatch.setenv("VAULT_TOKEN", "env-token")

    settings = load_settings(path)
    assert settings.vault_addr == "https://vault.from-env:8200"
    assert settings.vault_token == "env-token"

    settings = load_settings(path, address="https://vault.from-flag:8200", token="flag-token")
    assert settings.vault_addr == "https://vault.from-flag:8200"
    assert settings.vault_token == "flag-token"


@pytest.mark.parametrize("text", ["vault: [unclosed", "- a\n- b\n", "clusters: bravo\n", "clusters: [bravo]\n"])
def test_malformed_settings(tmp_path, text):
    path = tmp_path / "keymaster.yaml"
    path.write_text(text)
    with pytest.raises(ConfigLoadError):
        load_settings(path)


def test_duplicate_clusters(tmp_path):
    path = tmp_path / "keymaster.yaml"
    path.write_text("clusters:\n  - name: bravo\n  - name: bravo\n")
    with pytest.raises(ValidationError, match="duplicate cluster names: bravo"):
        load_settings(path)


def test_load_manifests_walks_directories(tmp_path):
    (tmp_path / "teams" / "nested").mkdir(parents=True)
    (tmp_path / "teams" / "b.yaml").write_text("name: b\n")
    (tmp_path / "teams" / "nested" / "a.yml").write_text("name: a\n")
    (tmp_path / "teams" / "README.md").write_text("ignored")
    single = tmp_path / "single.yaml"
    single.write_text("name: s\n")

    manifests = load_manifests([str(tmp_path / "teams"), str(single)])

    assert [p.name for p, _ in manifests] == ["b.yaml", "a.yml", "single.yaml"]
    assert manifests[0][1] == b"name: b\n"


def test_load_manifests_missing_path(tmp_path):
    with pytest.raises(ConfigLoadError, match="no such file or directory"):
        load_manifests([str(tmp_path / "missing")])
