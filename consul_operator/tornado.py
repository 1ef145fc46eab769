import logging

from tornado import httpclient
from tornado import gen

from consul_operator import base


__all__ = ['Consul']

log = logging.getLogger(__name__)


class HTTPClient(base.HTTPClient):
    def __init__(self, *args, **kwargs):
        super(HTTPClient, self).__init__(*args, **kwargs)
        self.client = httpclient.AsyncHTTPClient()

    def response(self, response):
        return base.Response(
            response.code, response.headers, response.body.decode('utf-8'))

    @gen.coroutine
    def _request(self, callback, request, cancel=None):
        self.check_cancel(cancel, request.method, request.url)
        log.debug('%s %s', request.method, request.url)
        try:
            response = yield self.client.fetch(request)
        except httpclient.HTTPError as e:
            if e.code == 599:
                raise base.Timeout
            response = e.response
        self.check_cancel(cancel, request.method, request.url)
        raise gen.Return(callback(self.response(response)))

    def _build(self, method, uri, data=None):
        kwargs = {'method': method, 'validate_cert': self.verify}
        if isinstance(self.cert, tuple):
            kwargs['client_cert'], kwargs['client_key'] = self.cert
        elif self.cert:
            kwargs['client_cert'] = self.cert
        if data is not None:
            kwargs['body'] = data
            # tornado refuses a DELETE body unless told otherwise
            kwargs['allow_nonstandard_methods'] = method == 'DELETE'
        return httpclient.HTTPRequest(uri, **kwargs)

    def get(self, callback, path, params=None, cancel=None):
        uri = self.uri(path, params)
        return self._request(callback, self._build('GET', uri), cancel)

    def put(self, callback, path, params=None, data='', cancel=None):
        uri = self.uri(path, params)
        request = self._build('PUT', uri, '' if data is None else data)
        return self._request(callback, request, cancel)

    def delete(self, callback, path, params=None, data=None, cancel=None):
        uri = self.uri(path, params)
        return self._request(
            callback, self._build('DELETE', uri, data), cancel)

    def post(self, callback, path, params=None, data='', cancel=None):
        uri = self.uri(path, params)
        request = self._build('POST', uri, '' if data is None else data)
        return self._request(callback, request, cancel)


class Consul(base.Consul):
    def connect(self, host, port, scheme, verify=True, cert=None):
        return HTTPClient(host, port, scheme, verify=verify, cert=cert)
