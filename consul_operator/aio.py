import asyncio
import logging
import warnings

import aiohttp
from consul_operator import base


__all__ = ['Consul']

log = logging.getLogger(__name__)


class HTTPClient(base.HTTPClient):
    """Asyncio adapter for consul_operator using aiohttp library"""

    def __init__(self, *args, **kwargs):
        super(HTTPClient, self).__init__(*args, **kwargs)
        self._session = None

    def _get_session(self):
        # ClientSession has to be created inside a running loop
        if self._session is None or self._session.closed:
            connector = aiohttp.TCPConnector(ssl=self.verify)
            self._session = aiohttp.ClientSession(connector=connector)
        return self._session

    async def _fetch(self, callback, method, uri, data=None):
        session = self._get_session()
        try:
            async with session.request(method, uri, data=data) as resp:
                body = await resp.text(encoding='utf-8')
        except asyncio.TimeoutError:
            raise base.Timeout('%s %s' % (method, uri))
        if resp.status == 599:
            raise base.Timeout
        r = base.Response(resp.status, resp.headers, body)
        return callback(r)

    async def _request(self, callback, method, uri, data=None, cancel=None):
        """
        *cancel* must be an asyncio.Event. Setting it aborts the request
        even while it is in flight.
        """
        self.check_cancel(cancel, method, uri)
        log.debug('%s %s', method, uri)
        if cancel is None:
            return await self._fetch(callback, method, uri, data=data)

        fetch = asyncio.ensure_future(
            self._fetch(callback, method, uri, data=data))
        waiter = asyncio.ensure_future(cancel.wait())
        try:
            done, _ = await asyncio.wait(
                [fetch, waiter], return_when=asyncio.FIRST_COMPLETED)
        finally:
            waiter.cancel()
            if not fetch.done():
                fetch.cancel()
        if fetch not in done:
            log.debug('cancelled %s %s', method, uri)
            raise base.Cancelled('%s %s' % (method, uri))
        return fetch.result()

    def __del__(self):
        if self._session is not None and not self._session.closed:
            warnings.warn("Unclosed connector in aio.Consul.HTTPClient",
                          ResourceWarning)

    def get(self, callback, path, params=None, cancel=None):
        uri = self.uri(path, params)
        return self._request(callback, 'GET', uri, cancel=cancel)

    def put(self, callback, path, params=None, data='', cancel=None):
        uri = self.uri(path, params)
        return self._request(callback, 'PUT', uri, data=data, cancel=cancel)

    def delete(self, callback, path, params=None, data=None, cancel=None):
        uri = self.uri(path, params)
        return self._request(
            callback, 'DELETE', uri, data=data, cancel=cancel)

    def post(self, callback, path, params=None, data='', cancel=None):
        uri = self.uri(path, params)
        return self._request(
            callback, 'POST', uri, data=data, cancel=cancel)

    async def close(self):
        if self._session is not None:
            await self._session.close()


class Consul(base.Consul):

    def connect(self, host, port, scheme, verify=True, cert=None):
        return HTTPClient(host, port, scheme, verify=verify, cert=cert)

    async def close(self):
        """Close all opened http connections"""
        await self.http.close()
