import sys

import pytest
from pydantic import ValidationError

from appsd.models import AppCommand, OperationKey, WorkloadDescriptor, generate_command, is_executable


def test_descriptor_aliases_and_defaults():
    desc = WorkloadDescriptor.model_validate({"app": "svc-a", "token": "v1", "path": "/usr/bin/svc-a"})

    assert desc.app_name == "svc-a"
    assert desc.version_token == "v1"
    assert desc.args == []
    assert desc.to_command() == AppCommand("svc-a", "/usr/bin/svc-a", [], [])


def test_descriptor_normalises_envs_and_args():
    desc = WorkloadDescriptor.model_validate({"app": "svc-a", "envs": {"A": "1"}, "args": "--port 80"})

    assert desc.envs == ["A=1"]
    assert desc.args == ["--port", "80"]


def test_version_label_is_the_fallback_token():
    assert WorkloadDescriptor(app="svc-a", labels={"version": "3"}).version_token == "3"
    assert WorkloadDescriptor(app="svc-a").version_token is None


def test_descriptor_requires_app_name():
    with pytest.raises(ValidationError):
        WorkloadDescriptor.model_validate({"app": ""})


def test_command_name_falls_back_to_basename():
    assert AppCommand("", "/opt/bin/worker").name == "worker"
    assert AppCommand("svc-a", "/opt/bin/worker").name == "svc-a"


def test_is_executable():
    assert is_executable(sys.executable)
    assert not is_executable("python3")
    assert not is_executable("/nonexistent/bin/tool")


def test_generate_command_splits_envs_and_args():
    command = generate_command(["A=1", "B=2", sys.executable, "-m", "http.server"])

    assert command.path == sys.executable
    assert command.envs == ["A=1", "B=2"]
    assert command.args == ["-m", "http.server"]
    assert generate_command([]) is None
    assert generate_command(["A=1"]) is None


def test_operation_key_for_command():
    key = OperationKey.for_command("ns1", AppCommand("x", "/bin/x", ["-a", "-b"]))
    assert str(key) == "ns1:/bin/x:-a -b"
