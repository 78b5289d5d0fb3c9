import time

from appsd.agent import Appsd
from appsd.config import AppsdConfig
from appsd.message import LocalChannel, Message


def test_disabled_agent_does_not_start(tmp_path, fake_backend):
    agent = Appsd(AppsdConfig(enable=False, conf_dir=tmp_path), LocalChannel(), backend=fake_backend, serve_http=False)

    assert agent.start() is False
    assert not agent.running
    agent.stop()


def test_agent_applies_messages_and_stops(tmp_path, fake_backend):
    channel = LocalChannel()
    channel.register_responder("metaManager", lambda m: ['{"data": {"svc-a.conf": "a=1\\n"}}'])
    cfg = AppsdConfig(conf_dir=tmp_path, drain_timeout=5.0)
    agent = Appsd(cfg, channel, backend=fake_backend, serve_http=False)

    assert agent.start()
    channel.publish(Message(operation="insert", resource="ns1/pod1", content={"app": "svc-a", "token": "v1"}))

    deadline = time.monotonic() + 5.0
    while fake_backend.count("start") < 1 and time.monotonic() < deadline:
        time.sleep(0.01)

    agent.stop()
    channel.close()

    assert fake_backend.calls == [("start", "svc-a")]
    assert (tmp_path / "svc-a.conf").read_text(encoding="utf-8") == "a=1\n"
    assert not agent.running
