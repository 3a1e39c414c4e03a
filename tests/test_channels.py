import pytest

from clientops import OperationError


class FakeChannel:
    def __init__(self, url, **callbacks):
        self.url = url
        self.callbacks = callbacks
        self.sent = []
        self.closed = False

    async def send(self, message):
        self.sent.append(message)

    async def close(self):
        self.closed = True
        self.callbacks["on_close"]()


@pytest.fixture
def channels(host):
    opened = []

    def open_channel(url, **callbacks):
        channel = FakeChannel(url, **callbacks)
        opened.append(channel)
        return channel

    host.open_channel = open_channel
    return opened


@pytest.fixture
def collected(runner):
    out = []

    async def collect(op, ctx):
        out.append(op.get("data", op.get("error")))

    runner.register_op("collect", collect)
    return out


def connect(**extra):
    op = {
        "_op": "wsConnect",
        "id": "feed",
        "url": "ws://{{host}}/live",
        "onOpen": {"_handler": True, "fn": "record", "args": ["open"]},
        "onMessage": {"_op": "collect"},
        "onClose": {"_handler": True, "fn": "record", "args": ["closed"]},
        "onError": {"_op": "collect"},
    }
    op.update(extra)
    return op


@pytest.mark.asyncio
async def test_connect_registers_and_routes_events(runner, host, channels, collected, calls):
    await runner.execute(connect(), {"host": "example.org"})
    assert [c.url for c in channels] == ["ws://example.org/live"]
    assert runner.registries.channels["feed"] is channels[0]

    channels[0].callbacks["on_open"]()
    channels[0].callbacks["on_message"]('{"patch": 1}')
    channels[0].callbacks["on_error"](ConnectionError("boom"))
    await host.wait_idle()
    assert calls == ["open"]
    assert collected == ['{"patch": 1}', "boom"]


@pytest.mark.asyncio
async def test_send_stringifies_and_templates(runner, channels):
    await runner.execute(connect(), {"host": "h"})
    await runner.execute({"_op": "wsSend", "id": "feed", "message": "hi {{n}}"}, {"n": 2})
    await runner.execute({"_op": "wsSend", "id": "feed", "message": {"type": "ping"}})
    await runner.execute({"_op": "wsSend", "id": "missing", "message": "dropped"})
    assert channels[0].sent == ["hi 2", '{"type":"ping"}']


@pytest.mark.asyncio
async def test_close_deregisters_and_fires_on_close(runner, host, channels, calls):
    await runner.execute(connect(), {"host": "h"})
    await runner.execute({"_op": "wsClose", "id": "feed"})
    await runner.execute({"_op": "wsClose", "id": "feed"})
    await host.wait_idle()
    assert channels[0].closed
    assert runner.registries.channels == {}
    assert calls == ["closed"]


@pytest.mark.asyncio
async def test_reconnect_with_same_id_closes_previous(runner, channels):
    await runner.execute(connect(), {"host": "a"})
    await runner.execute(connect(), {"host": "b"})
    assert channels[0].closed
    assert runner.registries.channels["feed"] is channels[1]


@pytest.mark.asyncio
async def test_connect_without_id_is_fatal(runner, channels):
    with pytest.raises(OperationError):
        await runner.execute(connect(id=None))
    assert channels == []


@pytest.mark.asyncio
async def test_websocket_channel_reports_failed_connection():
    from clientops.clientops_channels import WebSocketChannel

    events = []
    channel = WebSocketChannel(
        "not-a-websocket-url",
        on_open=lambda: events.append("open"),
        on_error=lambda exc: events.append("error"),
        on_close=lambda: events.append("close"),
    )
    await channel.start()
    assert events == ["error", "close"]
    assert not channel.is_open
    with pytest.raises(ConnectionError):
        await channel.send("hello")
