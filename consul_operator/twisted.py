import logging

# noinspection PyUnresolvedReferences
from treq.client import HTTPClient as TreqHTTPClient
from twisted.internet import reactor
from twisted.internet.defer import inlineCallbacks
from twisted.internet.error import ConnectError
from twisted.internet.ssl import ClientContextFactory
from twisted.web._newclient import \
    ResponseNeverReceived, RequestTransmissionFailed
from twisted.web.client import Agent, HTTPConnectionPool

from consul_operator import base
from consul_operator.base import ConsulException

__all__ = ['Consul']

log = logging.getLogger(__name__)


# noinspection PyClassHasNoInit
class InsecureContextFactory(ClientContextFactory):
    """
    This is an insecure context factory implementation. Note that this is not
    intended for production use. It is recommended either a treq/twisted
    provided factory be used or a custom factory for this purpose.

    https://twistedmatrix.com/documents/current/core/howto/ssl.html
    """

    def getContext(self, hostname, port):
        return ClientContextFactory.getContext(self)


class HTTPClient(base.HTTPClient):
    def __init__(self, contextFactory, *args, **kwargs):
        super(HTTPClient, self).__init__(*args, **kwargs)
        self.pool = HTTPConnectionPool(reactor)
        agent_kwargs = dict(reactor=reactor, pool=self.pool)
        if contextFactory is not None:
            # use the provided context factory
            agent_kwargs['contextFactory'] = contextFactory
        elif not self.verify:
            # if no context is provided and verify is set to false, use the
            # insecure context factory implementation
            agent_kwargs['contextFactory'] = InsecureContextFactory()

        self.client = TreqHTTPClient(Agent(**agent_kwargs))

    @staticmethod
    def response(code, headers, text):
        return base.Response(code, headers, text)

    @staticmethod
    def header_string(value):
        if isinstance(value, bytes):
            return value.decode(encoding='utf-8')
        return str(value)

    @inlineCallbacks
    def _get_resp(self, response):
        # Merge multiple header values as per RFC2616
        # http://www.w3.org/Protocols/rfc2616/rfc2616-sec4.html#sec4.2
        headers = dict([
            (self.header_string(k), ','.join(map(self.header_string, v)))
            for k, v in dict(response.headers.getAllRawHeaders()).items()
        ])
        body = yield response.text(encoding='utf-8')
        return response.code, headers, body

    @inlineCallbacks
    def request(self, callback, method, url, cancel=None, **kwargs):
        self.check_cancel(cancel, method.upper(), url)
        log.debug('%s %s', method.upper(), url)
        if kwargs.get('data') is not None and \
                not isinstance(kwargs['data'], bytes):
            kwargs['data'] = kwargs['data'].encode(encoding='utf-8')

        try:
            response = yield self.client.request(method, url, **kwargs)
            parsed = yield self._get_resp(response)
        except ConnectError as e:
            raise ConsulException(
                '{}: {}'.format(e.__class__.__name__, e))
        except ResponseNeverReceived:
            # this exception is raised if the connection to the server is lost
            # when yielding a response, this could be due to network issues or
            # server restarts
            raise ConsulException(
                'Server connection lost: {} {}'.format(method.upper(), url))
        except RequestTransmissionFailed:
            # this exception is expected if the reactor is stopped mid request
            raise ConsulException(
                'Request incomplete: {} {}'.format(method.upper(), url))
        self.check_cancel(cancel, method.upper(), url)
        return callback(self.response(*parsed))

    def get(self, callback, path, params=None, cancel=None):
        uri = self.uri(path, params)
        return self.request(callback, 'get', uri, cancel=cancel)

    def put(self, callback, path, params=None, data='', cancel=None):
        uri = self.uri(path, params)
        return self.request(callback, 'put', uri, cancel=cancel, data=data)

    def post(self, callback, path, params=None, data='', cancel=None):
        uri = self.uri(path, params)
        return self.request(callback, 'post', uri, cancel=cancel, data=data)

    def delete(self, callback, path, params=None, data=None, cancel=None):
        uri = self.uri(path, params)
        return self.request(
            callback, 'delete', uri, cancel=cancel, data=data)

    def close(self):
        return self.pool.closeCachedConnections()


class Consul(base.Consul):
    @staticmethod
    def connect(host,
                port,
                scheme,
                verify=True,
                cert=None,
                contextFactory=None):
        return HTTPClient(
            contextFactory, host, port, scheme, verify=verify, cert=cert)

    def close(self):
        """Close all cached http connections, returns a Deferred"""
        return self.http.close()
