import aiohttp
import pytest
from aiohttp import web

from gateway_session import GatewayInfo, HTTPResolver, ResolveError, StaticResolver


@pytest.fixture()
def api():
    requests = []

    async def gateway_bot(request: web.Request) -> web.Response:
        requests.append(request)
        if request.headers.get('Authorization') != 'Bot token':
            return web.json_response({'message': '401: Unauthorized', 'code': 0}, status=401)
        return web.json_response({'url': 'wss://gateway.example.com', 'shards': 2})

    app = web.Application()
    app.router.add_get('/api/v10/gateway/bot', gateway_bot)
    return app, requests


async def serve(app: web.Application) -> web.AppRunner:
    runner = web.AppRunner(app)
    await runner.setup()
    await web.TCPSite(runner, '127.0.0.1', 0).start()
    return runner


class TestHTTPResolver:
    @pytest.mark.asyncio
    async def test_resolve(self, api) -> None:
        app, requests = api
        runner = await serve(app)
        host, port = runner.addresses[0][:2]

        try:
            resolver = HTTPResolver('token', api=f'http://{host}:{port}/api')
            info = await resolver.resolve(encoding='json')
        finally:
            await runner.cleanup()

        assert info == GatewayInfo('wss://gateway.example.com', 2)
        assert requests[0].query['encoding'] == 'json'
        assert 'User-Agent' in requests[0].headers

    @pytest.mark.asyncio
    async def test_error(self, api) -> None:
        app, _ = api
        runner = await serve(app)
        host, port = runner.addresses[0][:2]

        try:
            resolver = HTTPResolver('wrong', api=f'http://{host}:{port}/api/')
            with pytest.raises(ResolveError) as info:
                await resolver.resolve()
        finally:
            await runner.cleanup()

        assert info.value.status == 401
        assert info.value.message == '401: Unauthorized'

    @pytest.mark.asyncio
    @pytest.mark.parametrize('response', (
        lambda: web.json_response({'shards': 1}),
        lambda: web.json_response(['wss://gateway.example.com']),
        lambda: web.Response(text='<html>Bad gateway</html>', content_type='text/html'),
    ))
    async def test_malformed_body(self, response) -> None:
        async def gateway_bot(request: web.Request) -> web.Response:
            return response()

        app = web.Application()
        app.router.add_get('/api/v10/gateway/bot', gateway_bot)
        runner = await serve(app)
        host, port = runner.addresses[0][:2]

        try:
            resolver = HTTPResolver('token', api=f'http://{host}:{port}/api')
            with pytest.raises(ResolveError) as info:
                await resolver.resolve()
        finally:
            await runner.cleanup()

        assert info.value.status is None

    @pytest.mark.asyncio
    async def test_unreachable(self, api) -> None:
        app, _ = api
        runner = await serve(app)
        host, port = runner.addresses[0][:2]
        await runner.cleanup()

        resolver = HTTPResolver('token', api=f'http://{host}:{port}/api')
        with pytest.raises(ResolveError) as info:
            await resolver.resolve()

        assert info.value.status is None
        assert isinstance(info.value.__cause__, aiohttp.ClientError)


class TestStaticResolver:
    @pytest.mark.asyncio
    async def test_resolve(self) -> None:
        resolver = StaticResolver('wss://gateway.example.com')

        assert await resolver.resolve() == GatewayInfo('wss://gateway.example.com')
