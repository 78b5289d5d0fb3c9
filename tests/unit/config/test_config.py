from pathlib import Path

import pytest

from appsd.config import AppsdConfig, load_config


@pytest.fixture(autouse=True)
def _clean_env(monkeypatch):
    for name in ("APPSD_CONFIG", "APPSD_NODE_ID", "APPSD_CONF_DIR", "APPSD_BACKEND"):
        monkeypatch.delenv(name, raising=False)


def test_defaults():
    cfg = load_config()

    assert cfg == AppsdConfig()
    assert cfg.port == 10550
    assert cfg.stop_timeout == 15.0
    assert cfg.dedup_cooldown == 2.0
    assert not cfg.tls_enabled


def test_load_yaml_file(tmp_path):
    path = tmp_path / "appsd.yaml"
    path.write_text(
        "port: 10600\nnode_id: edge-1\nconf_dir: /opt/apps/conf\nbackend: supervisor\n",
        encoding="utf-8",
    )

    cfg = load_config(path)

    assert cfg.port == 10600
    assert cfg.node_id == "edge-1"
    assert cfg.conf_dir == Path("/opt/apps/conf")
    assert cfg.backend == "supervisor"


def test_load_sectioned_file_from_env(tmp_path, monkeypatch):
    path = tmp_path / "edge.yaml"
    path.write_text("appsd:\n  enable: false\n  query_timeout: 3\n", encoding="utf-8")
    monkeypatch.setenv("APPSD_CONFIG", str(path))

    cfg = load_config()

    assert cfg.enable is False
    assert cfg.query_timeout == 3.0


def test_env_overrides_file(tmp_path, monkeypatch):
    path = tmp_path / "appsd.yaml"
    path.write_text("node_id: from-file\n", encoding="utf-8")
    monkeypatch.setenv("APPSD_NODE_ID", "from-env")
    monkeypatch.setenv("APPSD_CONF_DIR", str(tmp_path))

    cfg = load_config(path)

    assert cfg.node_id == "from-env"
    assert cfg.conf_dir == tmp_path


def test_missing_file(tmp_path):
    with pytest.raises(FileNotFoundError):
        load_config(tmp_path / "nope.yaml")


@pytest.mark.parametrize(
    "content",
    [
        "unknown_key: 1\n",
        "backend: systemd\n",
        "port: 70000\n",
        "stop_retries: 0\n",
        "stop_poll_interval: 0\n",
        "stop_timeout: 0\n",
        "stop_poll_interval: -1\n",
        "cert_file: /etc/appsd/tls.crt\n",
        "- not\n- a mapping\n",
    ],
)
def test_invalid_values(tmp_path, content):
    path = tmp_path / "appsd.yaml"
    path.write_text(content, encoding="utf-8")
    with pytest.raises(ValueError):
        load_config(path)


def test_to_dict_stringifies_paths():
    data = AppsdConfig(cert_file=Path("/a.crt"), key_file=Path("/a.key")).to_dict()
    assert data["conf_dir"] == "/etc/appsd/conf.d"
    assert data["cert_file"] == "/a.crt"
