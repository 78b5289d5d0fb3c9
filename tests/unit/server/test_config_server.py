import base64
import socket

import httpx
import pytest
from fastapi.testclient import TestClient

from appsd.config import AppsdConfig
from appsd.errors import FileIOFailure, RemoteQueryFailure
from appsd.server import ConfigQueryServer, create_app, format_secrets


@pytest.fixture
def client(fake_store):
    return TestClient(create_app(fake_store))


def test_query_success(client, fake_store):
    fake_store.put("configmap", "svc-a", {"data": {"k": "v"}})

    resp = client.get("/config", params={"appname": "svc-a", "type": "configmap"})

    assert resp.status_code == 200
    assert resp.json() == {"code": 1000, "msg": "success", "body": [{"k": "v"}]}


def test_query_without_appname_or_domain_is_invalid(client, fake_store):
    resp = client.get("/config", params={"type": "configmap"})

    assert resp.status_code == 400
    assert resp.json()["code"] == "1002"
    assert resp.json()["msg"] == "Invalid parameter"
    assert fake_store.queries == []


def test_query_without_type_is_invalid(client):
    resp = client.get("/config", params={"appname": "svc-a"})
    assert resp.status_code == 400


def test_legacy_route_defaults_to_configmap(client, fake_store):
    fake_store.put("configmap", "svc-a", {"data": {"k": "v"}})

    resp = client.get("/configmap", params={"appname": "svc-a"})

    assert resp.json()["body"] == [{"k": "v"}]
    assert fake_store.queries == [("configmap", "svc-a", "")]


def test_non_get_method_is_rejected(client):
    resp = client.post("/config", params={"appname": "svc-a", "type": "configmap"})

    assert resp.status_code == 405
    assert resp.json() == {"code": "1113", "msg": "Request method error", "body": None}


def test_unknown_type_is_format_failure(client):
    resp = client.get("/config", params={"appname": "svc-a", "type": "pod"})

    assert resp.status_code == 500
    assert resp.json()["code"] == "1108"


def test_empty_configmap_result_is_format_failure(client):
    resp = client.get("/config", params={"appname": "svc-a", "type": "configmap"})

    assert resp.status_code == 500
    assert resp.json()["code"] == "1108"


def test_store_failure_is_internal_error(client, fake_store):
    fake_store.error = RemoteQueryFailure("timeout after 10s")

    resp = client.get("/config", params={"appname": "svc-a", "type": "configmap"})

    assert resp.status_code == 500
    assert resp.json() == {"code": "1001", "msg": "Internal server error", "body": None}


def test_undecodable_object_is_decode_failure(client, fake_store):
    fake_store.objects[("configmap", "svc-a")] = ["{broken"]

    resp = client.get("/config", params={"appname": "svc-a", "type": "configmap"})

    assert resp.status_code == 500
    assert resp.json()["code"] == "1107"


def test_configmap_binary_data_is_decoded(client, fake_store):
    encoded = base64.b64encode(b"line=1\n").decode()
    fake_store.put("configmap", "svc-a", {"data": {}, "binaryData": {"svc-a.conf": encoded}})

    resp = client.get("/config", params={"appname": "svc-a", "type": "configmap"})

    assert resp.json()["body"] == [{"svc-a.conf": "line=1\n"}]


def test_secret_values_are_decoded_when_valid(client, fake_store):
    fake_store.put("secret", "example.com", {"data": {"tls.crt": "aGVsbG8=", "raw": "not-base64!"}})

    resp = client.get("/config", params={"domain": "example.com", "type": "secret"})

    assert resp.status_code == 200
    assert resp.json()["body"] == [{"tls.crt": "hello", "raw": "not-base64!"}]
    assert fake_store.queries == [("secret", "", "example.com")]


def test_secret_domain_without_objects_is_cert_empty(client):
    resp = client.get("/config", params={"domain": "example.com", "type": "secret"})

    assert resp.status_code == 403
    assert resp.json()["code"] == "1112"


def test_secret_by_app_without_objects_is_empty_list():
    assert format_secrets([], domain="") == []


def test_tls_material_must_exist(tmp_path, fake_store):
    cfg = AppsdConfig(cert_file=tmp_path / "missing.crt", key_file=tmp_path / "missing.key")
    with pytest.raises(FileIOFailure):
        ConfigQueryServer(create_app(fake_store), cfg)


def _free_port() -> int:
    with socket.socket() as s:
        s.bind(("127.0.0.1", 0))
        return s.getsockname()[1]


def test_server_serves_and_stops(fake_store):
    fake_store.put("configmap", "svc-a", {"data": {"k": "v"}})
    cfg = AppsdConfig(port=_free_port(), shutdown_grace=1.0, log_level="WARNING")
    server = ConfigQueryServer(create_app(fake_store), cfg)

    server.start()
    try:
        resp = httpx.get(f"{server.url}/config", params={"appname": "svc-a", "type": "configmap"})
        assert resp.json()["code"] == 1000
    finally:
        server.stop()


@pytest.mark.filterwarnings("error::pytest.PytestUnhandledThreadExceptionWarning")
def test_bind_failure_is_fatal(fake_store):
    with socket.socket() as busy:
        busy.bind(("127.0.0.1", 0))
        busy.listen(1)
        port = busy.getsockname()[1]
        cfg = AppsdConfig(port=port, log_level="CRITICAL")

        server = ConfigQueryServer(create_app(fake_store), cfg)
        with pytest.raises(RuntimeError):
            server.start(timeout=5.0)

    assert server.exit_code == 1
