import asyncio
import logging
from typing import Any, NamedTuple, Optional, Protocol

import aiohttp

from ._errors import ResolveError

__all__ = (
    'GatewayInfo',
    'Resolver',
    'StaticResolver',
    'HTTPResolver',
)


_log = logging.getLogger(__name__)


class GatewayInfo(NamedTuple):
    url: str
    shards: Optional[int] = None


class Resolver(Protocol):
    """Supplies the URL a fresh (non-resumed) connection is opened to."""

    async def resolve(self, **query: Any) -> GatewayInfo:
        ...


class StaticResolver:
    """Resolver always returning the same endpoint."""

    def __init__(self, url: str, shards: Optional[int] = None) -> None:
        self.info = GatewayInfo(url, shards)

    async def resolve(self, **query: Any) -> GatewayInfo:
        return self.info


class HTTPResolver:
    """Resolve the gateway endpoint through the Get Gateway Bot endpoint.

    Rate limits are not handled, a 429 response is raised like any other
    error response.
    """

    def __init__(
        self,
        token: str,
        *,
        api: str = 'https://discord.com/api',
        version: int = 10,
        session: Optional[aiohttp.ClientSession] = None,
        user_agent: str = 'DiscordBot (gateway_session, 0.1.0)',
    ) -> None:
        """Initialize the resolver.

        Parameters:
            token: Bot token used for the Authorization header.
            api: Base URL of the HTTP API.
            version: API version to request.
            session:
                aiohttp session to make the request with. When not passed a
                session is created for each request.
            user_agent: Value of the User-Agent header.
        """
        self._headers = {
            'Authorization': f'Bot {token}',
            'User-Agent': user_agent,
        }
        self.url = f'{api.rstrip("/")}/v{version}/gateway/bot'
        self._session = session

    async def _request(self, session: aiohttp.ClientSession, query: Any) -> GatewayInfo:
        try:
            async with session.get(self.url, params=query, headers=self._headers) as resp:
                if not 200 <= resp.status < 300:
                    message = None
                    try:
                        body = await resp.json()
                        message = body.get('message')
                    except (aiohttp.ContentTypeError, ValueError, AttributeError):
                        pass
                    raise ResolveError(resp.status, message)

                body = await resp.json()
        except (aiohttp.ClientError, asyncio.TimeoutError) as exc:
            raise ResolveError(None, str(exc) or type(exc).__name__) from exc
        except ValueError as exc:
            raise ResolveError(None, f'Malformed response body ({exc})') from exc

        if not isinstance(body, dict) or not isinstance(body.get('url'), str):
            raise ResolveError(None, 'Response body has no gateway URL')

        _log.debug('Resolved gateway endpoint %s (%s shards)', body['url'], body.get('shards'))
        return GatewayInfo(body['url'], body.get('shards'))

    async def resolve(self, **query: Any) -> GatewayInfo:
        """Request the gateway URL and recommended shard count.

        Parameters:
            query: Additional query parameters of the request.

        Raises:
            ResolveError:
                The request failed, the API responded with a non-2xx status
                or the response body has no gateway URL.
        """
        query = {k: str(v) for k, v in query.items()}

        if self._session is not None:
            return await self._request(self._session, query)

        async with aiohttp.ClientSession() as session:
            return await self._request(session, query)
