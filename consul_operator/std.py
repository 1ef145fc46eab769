import logging

from urllib.parse import quote_plus

import requests

from consul_operator import base


__all__ = ['Consul']

log = logging.getLogger(__name__)


class HTTPClient(base.HTTPClient):
    def __init__(self, *args, **kwargs):
        super(HTTPClient, self).__init__(*args, **kwargs)
        if self.host.startswith('unix://'):
            netloc = quote_plus(self.host[len('unix://'):])
            self.base_uri = 'http+unix://{0}'.format(netloc)
            try:
                import requests_unixsocket
                self.session = requests_unixsocket.Session()
            except ImportError:
                raise base.ConsulException('To use a unix socket to connect to'
                                           ' Consul you need to install the'
                                           ' "requests_unixsocket" package.')
        else:
            self.session = requests.session()

    def response(self, response):
        response.encoding = 'utf-8'
        return base.Response(
            response.status_code, response.headers, response.text)

    def _request(self, callback, method, uri, data=None, cancel=None):
        self.check_cancel(cancel, method, uri)
        log.debug('%s %s', method, uri)
        response = self.session.request(
            method, uri, data=data, verify=self.verify, cert=self.cert)
        # requests can't abort an exchange in flight, drop its result instead
        self.check_cancel(cancel, method, uri)
        return callback(self.response(response))

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
        return self._request(callback, 'POST', uri, data=data, cancel=cancel)


class Consul(base.Consul):
    def connect(self, host, port, scheme, verify=True, cert=None):
        return HTTPClient(host, port, scheme, verify=verify, cert=cert)
