import json
import threading

import pytest
import pytest_twisted
from twisted.internet import reactor
from twisted.web import resource, server

import consul_operator
import consul_operator.twisted


class Endpoint(resource.Resource):
    """
    Serves a canned *status* and *body* for every method, recording the
    requests it receives.
    """
    isLeaf = True

    def __init__(self, status=200, body='', headers=None, on_request=None):
        resource.Resource.__init__(self)
        self.on_request = on_request
        self.status = status
        self.body = body
        self.headers = headers or {}
        self.requests = []

    def render(self, request):
        self.requests.append((
            request.method.decode('utf-8'),
            request.path.decode('utf-8'),
            request.content.read().decode('utf-8')))
        if self.on_request:
            self.on_request()
        request.setResponseCode(self.status)
        for name, value in self.headers.items():
            request.setHeader(name, value)
        return self.body.encode('utf-8')


def listen(endpoint):
    port = reactor.listenTCP(0, server.Site(endpoint), interface='127.0.0.1')
    return port, port.getHost().port


class TestConsul(object):
    @pytest_twisted.inlineCallbacks
    def test_raft_config(self):
        endpoint = Endpoint(body=json.dumps({
            'Servers': [{
                'ID': '127.0.0.1:8300', 'Node': 'alice',
                'Address': '127.0.0.1:8300', 'Leader': True, 'Voter': True,
            }],
            'Index': 4,
        }), headers={'X-Consul-Index': '4'})
        listening, port = listen(endpoint)
        c = consul_operator.twisted.Consul(port=port)
        try:
            result = yield c.operator.raft_config()
            assert result.index == 4
            assert result.response.servers[0].node == 'alice'
            assert endpoint.requests == [
                ('GET', '/v1/operator/raft/configuration', '')]
        finally:
            yield c.close()
            yield listening.stopListening()

    @pytest_twisted.inlineCallbacks
    def test_keyring_install(self):
        endpoint = Endpoint(body='true')
        listening, port = listen(endpoint)
        c = consul_operator.twisted.Consul(port=port)
        try:
            response = yield c.operator.keyring_install('k3y')
            assert response is True
            method, path, body = endpoint.requests[0]
            assert (method, path) == ('POST', '/v1/operator/keyring')
            assert json.loads(body) == {'Key': 'k3y'}
        finally:
            yield c.close()
            yield listening.stopListening()

    @pytest_twisted.inlineCallbacks
    def test_area_create_without_id(self):
        endpoint = Endpoint(body='{}')
        listening, port = listen(endpoint)
        c = consul_operator.twisted.Consul(port=port)
        try:
            with pytest.raises(consul_operator.ConsulException):
                yield c.operator.area_create(
                    consul_operator.AreaRequest('dc2'))
        finally:
            yield c.close()
            yield listening.stopListening()

    @pytest_twisted.inlineCallbacks
    def test_error_status(self):
        endpoint = Endpoint(status=500, body='rpc error')
        listening, port = listen(endpoint)
        c = consul_operator.twisted.Consul(port=port)
        try:
            with pytest.raises(consul_operator.ConsulException):
                yield c.operator.segment_list()
        finally:
            yield c.close()
            yield listening.stopListening()

    @pytest_twisted.inlineCallbacks
    def test_pre_cancelled(self):
        endpoint = Endpoint(body='true')
        listening, port = listen(endpoint)
        c = consul_operator.twisted.Consul(port=port)
        cancel = threading.Event()
        cancel.set()
        try:
            with pytest.raises(consul_operator.Cancelled):
                yield c.operator.area_delete('a1', cancel=cancel)
            assert endpoint.requests == []
        finally:
            yield c.close()
            yield listening.stopListening()

    @pytest_twisted.inlineCallbacks
    def test_cancelled_in_flight(self):
        cancel = threading.Event()
        endpoint = Endpoint(body='true', on_request=cancel.set)
        listening, port = listen(endpoint)
        c = consul_operator.twisted.Consul(port=port)
        try:
            with pytest.raises(consul_operator.Cancelled):
                yield c.operator.keyring_use('k3y', cancel=cancel)
            assert len(endpoint.requests) == 1
        finally:
            yield c.close()
            yield listening.stopListening()

    @pytest_twisted.inlineCallbacks
    def test_no_return_value_warnings(self, recwarn):
        endpoint = Endpoint(body='["", "alpha"]')
        listening, port = listen(endpoint)
        c = consul_operator.twisted.Consul(port=port)
        try:
            result = yield c.operator.segment_list()
            assert result.response == ['', 'alpha']
            assert not [w for w in recwarn.list
                        if 'returnValue' in str(w.message)]
        finally:
            yield c.close()
            yield listening.stopListening()

    def test_connect(self):
        factory = consul_operator.twisted.InsecureContextFactory()
        http = consul_operator.twisted.Consul.connect(
            '127.0.0.1', 8500, 'http', contextFactory=factory)
        assert http.uri('/v1/operator/area') == \
            'http://127.0.0.1:8500/v1/operator/area'
        with pytest.raises(TypeError):
            consul_operator.twisted.Consul.connect(
                '127.0.0.1', 8500, 'http', timeout=3)

    @pytest_twisted.inlineCallbacks
    def test_raft_config_live(self, consul_port):
        c = consul_operator.twisted.Consul(port=consul_port)
        result = yield c.operator.raft_config()
        assert result.response.servers[0].leader is True
        yield c.close()
