import asyncio

import pytest

from camera_observer.probe import ProbeResult, probe_broker


@pytest.mark.asyncio
async def test_probe_succeeds_against_listening_port():
    async def _accept(reader, writer):
        writer.close()

    server = await asyncio.start_server(_accept, "127.0.0.1", 0)
    port = server.sockets[0].getsockname()[1]

    async with server:
        result = await probe_broker("127.0.0.1", port, timeout=1.0)

    assert result.ok
    assert "SUCCESSFUL" in result.describe()


@pytest.mark.asyncio
async def test_probe_reports_refused_connection():
    server = await asyncio.start_server(lambda r, w: None, "127.0.0.1", 0)
    port = server.sockets[0].getsockname()[1]
    server.close()
    await server.wait_closed()

    result = await probe_broker("127.0.0.1", port, timeout=1.0)

    assert not result.ok
    assert result.error
    assert result.describe().startswith("MQTT connection FAILED")


@pytest.mark.asyncio
async def test_probe_reports_timeout(monkeypatch):
    async def never_connects(host, port):
        await asyncio.sleep(10)

    monkeypatch.setattr(
        "camera_observer.probe.asyncio.open_connection", never_connects
    )

    result = await probe_broker("broker.invalid", 1883, timeout=0.01)

    assert result == ProbeResult("broker.invalid", 1883, ok=False, error="timed out after 0.01s")
