import json
import types

from src.tastematch.infrastructure import events


def _redis_module(factory):
    return types.SimpleNamespace(Redis=types.SimpleNamespace(from_url=staticmethod(factory)))


def test_publish_without_url_returns_quietly(monkeypatch):
    monkeypatch.delenv("REDIS_URL", raising=False)
    assert events.get_publisher() is None
    assert events.publish_room_event("room_created", "r1", participant="p1") is False


class FakeRedisClient:
    attempt = 0
    published = []
    publish_should_fail = False

    def ping(self):
        if FakeRedisClient.attempt == 0:
            FakeRedisClient.attempt += 1
            raise Exception("connect failed")

    def publish(self, channel, payload):
        if FakeRedisClient.publish_should_fail:
            FakeRedisClient.publish_should_fail = False
            raise Exception("publish failed")
        FakeRedisClient.published.append((channel, payload))


def test_publisher_recovers_after_connection_failure(monkeypatch):
    FakeRedisClient.attempt = 0
    FakeRedisClient.published = []
    FakeRedisClient.publish_should_fail = False

    def from_url(url, socket_timeout=0.5):
        return FakeRedisClient()

    monkeypatch.setattr(events, "redis", _redis_module(from_url))
    monkeypatch.setenv("REDIS_URL", "redis://localhost")

    publisher = events.get_publisher()
    assert publisher is not None
    assert not publisher.connected  # first ping failed

    assert events.publish_room_event("match_result", "r1", compatibility=40) is True
    channel, raw = FakeRedisClient.published[-1]
    assert channel == "tastematch.events.match_result"
    payload = json.loads(raw)
    assert payload["room_id"] == "r1"
    assert payload["compatibility"] == 40
    assert payload["ts"].endswith("Z")

    FakeRedisClient.publish_should_fail = True
    assert events.publish_room_event("match_result", "r1") is False
    assert events.get_publisher() is publisher
    assert events.publish_room_event("action_chosen", "r1", action="cook") is True


def test_publisher_without_redis_client_installed(monkeypatch):
    monkeypatch.setattr(events, "redis", None)
    monkeypatch.setenv("REDIS_URL", "redis://localhost")
    publisher = events.get_publisher()
    assert publisher is not None and not publisher.connected
    assert events.publish_room_event("room_joined", "r1") is False
