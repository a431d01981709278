import asyncio
from typing import List, Optional

import pytest
from wsproto import ConnectionType, WSConnection
from wsproto.connection import ConnectionState
from wsproto.events import (
    AcceptConnection, CloseConnection, RejectConnection, Request,
    TextMessage
)

from gateway_session import WebSocketTransport


class TestUnopened:
    def test_send_is_dropped(self) -> None:
        transport = WebSocketTransport('wss://gateway.example.com')

        transport.send('{"op": 1, "d": null}')

    def test_close_reports_once(self) -> None:
        closes: List[Optional[int]] = []
        transport = WebSocketTransport('wss://gateway.example.com')
        transport.attach(lambda message: None, closes.append)

        transport.close(4000)
        transport.close(1000)

        assert closes == [4000]

    def test_detached(self) -> None:
        closes: List[Optional[int]] = []
        transport = WebSocketTransport('wss://gateway.example.com')
        transport.attach(lambda message: None, closes.append)
        transport.detach()

        transport.close(4000)

        assert closes == []


HELLO = '{"op": 10, "d": {"heartbeat_interval": 41250}}'


class GatewayServer:
    """A WebSocket server sending HELLO and recording what it receives."""

    def __init__(self) -> None:
        self.received: List[str] = []
        self.message = asyncio.Event()
        self.close_codes: List[int] = []

    async def handle(self, reader: asyncio.StreamReader, writer: asyncio.StreamWriter) -> None:
        ws = WSConnection(ConnectionType.SERVER)

        try:
            while True:
                data = await reader.read(65536)
                ws.receive_data(data or None)

                for event in ws.events():
                    if isinstance(event, Request):
                        writer.write(ws.send(AcceptConnection()))
                        writer.write(ws.send(TextMessage(data=HELLO)))

                    elif isinstance(event, TextMessage):
                        self.received.append(event.data)
                        self.message.set()

                    elif isinstance(event, CloseConnection):
                        self.close_codes.append(event.code)
                        if ws.state == ConnectionState.REMOTE_CLOSING:
                            writer.write(ws.send(event.response()))
                        return

                if not data:
                    return

                await writer.drain()
        finally:
            writer.close()


@pytest.mark.asyncio
async def test_roundtrip() -> None:
    gateway = GatewayServer()
    server = await asyncio.start_server(gateway.handle, '127.0.0.1', 0)
    port = server.sockets[0].getsockname()[1]

    transport = WebSocketTransport(f'ws://127.0.0.1:{port}/?v=10&encoding=json')

    messages: List[str] = []
    closed = asyncio.get_running_loop().create_future()

    def on_message(message: str) -> None:
        messages.append(message)
        transport.send('{"op": 1, "d": null}')

    transport.attach(on_message, closed.set_result)

    try:
        await transport.open()
        await asyncio.wait_for(gateway.message.wait(), 5)

        assert messages == [HELLO]
        assert gateway.received == ['{"op": 1, "d": null}']

        transport.close(4000)
        assert await asyncio.wait_for(closed, 5) == 4000
        assert gateway.close_codes == [4000]

        await asyncio.wait_for(transport.wait_closed(), 5)
    finally:
        server.close()
        await server.wait_closed()


def scripted(*events):
    """Server answering the upgrade request with `events` in a single write."""

    async def handle(reader: asyncio.StreamReader, writer: asyncio.StreamWriter) -> None:
        ws = WSConnection(ConnectionType.SERVER)

        try:
            while True:
                data = await reader.read(65536)
                if not data:
                    return

                ws.receive_data(data)
                for event in ws.events():
                    if isinstance(event, Request):
                        writer.write(b''.join(ws.send(e) for e in events))
                        await writer.drain()
        finally:
            writer.close()

    return handle


async def run_scripted(*events):
    server = await asyncio.start_server(scripted(*events), '127.0.0.1', 0)
    port = server.sockets[0].getsockname()[1]

    transport = WebSocketTransport(f'ws://127.0.0.1:{port}/?v=10&encoding=json')

    messages: List[str] = []
    closed = asyncio.get_running_loop().create_future()
    transport.attach(messages.append, closed.set_result)

    try:
        await transport.open()
        code = await asyncio.wait_for(closed, 5)
        await asyncio.wait_for(transport.wait_closed(), 5)
    finally:
        server.close()
        await server.wait_closed()

    return messages, code


class TestRemoteClose:
    @pytest.mark.asyncio
    async def test_messages_before_close(self) -> None:
        messages, code = await run_scripted(
            AcceptConnection(),
            TextMessage(data=HELLO),
            CloseConnection(code=1001),
        )

        assert messages == [HELLO]
        assert code == 1001

    @pytest.mark.asyncio
    async def test_rejected_upgrade(self) -> None:
        messages, code = await run_scripted(RejectConnection(status_code=404))

        assert messages == []
        assert code == 1006
