import abc
import collections
import logging
import json
import os

from urllib.parse import quote, urlencode


log = logging.getLogger(__name__)


class ConsulException(Exception):
    pass


class ACLDisabled(ConsulException):
    pass


class ACLPermissionDenied(ConsulException):
    pass


class NotFound(ConsulException):
    pass


class Timeout(ConsulException):
    pass


class BadRequest(ConsulException):
    pass


class ClientError(ConsulException):
    """Encapsulates 4xx Http error code"""
    pass


class Cancelled(ConsulException):
    """The caller's cancellation signal was set"""
    pass


#
# Records decoded from the operator endpoints

class RaftServer(collections.namedtuple(
        'RaftServer', ['id', 'node', 'address', 'leader', 'voter'])):
    """
    One server in the Raft configuration. *node* is "(unknown)" when the
    server isn't known to Consul.
    """
    __slots__ = ()

    @classmethod
    def from_json(klass, data):
        return klass(
            id=data.get('ID'),
            node=data.get('Node'),
            address=data.get('Address'),
            leader=data.get('Leader'),
            voter=data.get('Voter'))


class RaftConfiguration(collections.namedtuple(
        'RaftConfiguration', ['servers', 'index'])):
    __slots__ = ()

    @classmethod
    def from_json(klass, data):
        return klass(
            servers=[RaftServer.from_json(x)
                     for x in data.get('Servers') or []],
            index=data.get('Index'))


class KeyringResponse(collections.namedtuple(
        'KeyringResponse',
        ['wan', 'datacenter', 'segment', 'keys', 'num_nodes'])):
    """
    State of one gossip keyring. *keys* maps each installed key to the
    number of nodes it is installed on, out of *num_nodes*.
    """
    __slots__ = ()

    @classmethod
    def from_json(klass, data):
        return klass(
            wan=data.get('WAN'),
            datacenter=data.get('Datacenter'),
            segment=data.get('Segment'),
            keys=dict(data.get('Keys') or {}),
            num_nodes=data.get('NumNodes'))


class AreaRequest(collections.namedtuple(
        'AreaRequest', ['peer_datacenter', 'retry_join', 'use_tls'])):
    """
    Definition of a network area.

    *peer_datacenter* is the Consul datacenter making up the other side of
    the area. *retry_join* is an optional list of server addresses (IPs or
    hostnames with an optional port) to join. *use_tls* asks for gossip
    over the area to be encrypted with TLS if possible.
    """
    __slots__ = ()

    def __new__(klass, peer_datacenter, retry_join=None, use_tls=False):
        return super(AreaRequest, klass).__new__(
            klass, peer_datacenter, retry_join, use_tls)

    def to_json(self):
        return {
            'PeerDatacenter': self.peer_datacenter,
            'RetryJoin': list(self.retry_join or []),
            'UseTLS': bool(self.use_tls),
        }


class Area(collections.namedtuple(
        'Area', ['id', 'peer_datacenter', 'retry_join', 'use_tls'])):
    __slots__ = ()

    @classmethod
    def from_json(klass, data):
        return klass(
            id=data.get('ID'),
            peer_datacenter=data.get('PeerDatacenter'),
            retry_join=list(data.get('RetryJoin') or []),
            use_tls=data.get('UseTLS'))


class AreaJoinResponse(collections.namedtuple(
        'AreaJoinResponse', ['address', 'joined', 'error'])):
    __slots__ = ()

    @classmethod
    def from_json(klass, data):
        return klass(
            address=data.get('Address'),
            joined=data.get('Joined'),
            error=data.get('Error'))


def _field(data, name):
    # license objects come back snake_case, older agents used PascalCase
    if name in data:
        return data[name]
    return data.get(''.join(x.capitalize() for x in name.split('_')))


class Flags(collections.namedtuple('Flags', ['package'])):
    __slots__ = ()

    @classmethod
    def from_json(klass, data):
        return klass(package=_field(data, 'package'))


class License(collections.namedtuple(
        'License',
        ['license_id', 'customer_id', 'installation_id', 'issue_time',
         'start_time', 'expiration_time', 'product', 'flags', 'features',
         'temporary'])):
    __slots__ = ()

    @classmethod
    def from_json(klass, data):
        flags = _field(data, 'flags')
        return klass(
            license_id=_field(data, 'license_id'),
            customer_id=_field(data, 'customer_id'),
            installation_id=_field(data, 'installation_id'),
            issue_time=_field(data, 'issue_time'),
            start_time=_field(data, 'start_time'),
            expiration_time=_field(data, 'expiration_time'),
            product=_field(data, 'product'),
            flags=None if flags is None else Flags.from_json(flags),
            features=list(_field(data, 'features') or []),
            temporary=_field(data, 'temporary'))


class ConsulLicense(collections.namedtuple(
        'ConsulLicense', ['valid', 'license', 'warnings'])):
    __slots__ = ()

    @classmethod
    def from_json(klass, data):
        license = data.get('License')
        return klass(
            valid=data.get('Valid'),
            license=None if license is None else License.from_json(license),
            warnings=list(data.get('Warnings') or []))


class PartitionResponse(collections.namedtuple(
        'PartitionResponse',
        ['name', 'description', 'deleted_at', 'create_index',
         'modify_index'])):
    __slots__ = ()

    @classmethod
    def from_json(klass, data):
        return klass(
            name=data.get('Name'),
            description=data.get('Description'),
            deleted_at=data.get('DeletedAt'),
            create_index=data.get('CreateIndex'),
            modify_index=data.get('ModifyIndex'))


QueryResult = collections.namedtuple(
    'QueryResult', ['index', 'known_leader', 'last_contact', 'response'])


Response = collections.namedtuple('Response', ['code', 'headers', 'body'])


#
# Conveniences to create consistent callback handlers for endpoints

class CB(object):
    @classmethod
    def _status(klass, response, allow_404=True):
        # status checking
        if 400 <= response.code < 500:
            if response.code == 400:
                raise BadRequest('%d %s' % (response.code, response.body))
            elif response.code == 401:
                raise ACLDisabled(response.body)
            elif response.code == 403:
                raise ACLPermissionDenied(response.body)
            elif response.code == 404:
                if not allow_404:
                    raise NotFound(response.body)
            else:
                raise ClientError("%d %s" % (response.code, response.body))
        elif 500 <= response.code < 600:
            raise ConsulException("%d %s" % (response.code, response.body))
        elif not 200 <= response.code < 300:
            # 1xx and 3xx
            raise ConsulException("%d %s" % (response.code, response.body))

    @classmethod
    def _decode(klass, response):
        try:
            return json.loads(response.body)
        except ValueError as e:
            raise ConsulException(
                'invalid JSON in response (%s): %r' % (e, response.body))

    @classmethod
    def _header(klass, response, name):
        # Consul sends Go-canonical names, e.g. X-Consul-Knownleader
        for key, value in (response.headers or {}).items():
            if key.lower() == name.lower():
                return value
        return None

    @classmethod
    def bool(klass):
        # returns True on successful response
        def cb(response):
            CB._status(response, allow_404=False)
            return 200 <= response.code < 300
        return cb

    @classmethod
    def json(klass, map=None):
        """
        *map* is a function to apply to the decoded body.
        """
        def cb(response):
            CB._status(response, allow_404=False)
            data = CB._decode(response)
            if map:
                data = map(data)
            return data
        return cb

    @classmethod
    def id(klass):
        """
        Returns the 'ID' field of the json object. A response without an
        ID is an error rather than an empty identifier.
        """
        def cb(response):
            CB._status(response, allow_404=False)
            data = CB._decode(response)
            if not isinstance(data, dict) or not data.get('ID'):
                raise ConsulException(
                    'response is missing the ID field: %r' % response.body)
            return data['ID']
        return cb

    @classmethod
    def query(klass, map=None):
        """
        Like *json* but wraps the result in a QueryResult carrying the
        index, known leader and last contact headers.
        """
        def cb(response):
            CB._status(response, allow_404=False)
            data = CB._decode(response)
            if map:
                data = map(data)
            index = CB._header(response, 'X-Consul-Index')
            known_leader = CB._header(response, 'X-Consul-KnownLeader')
            last_contact = CB._header(response, 'X-Consul-LastContact')
            return QueryResult(
                index=None if index is None else int(index),
                known_leader=None if known_leader is None
                else known_leader == 'true',
                last_contact=None if last_contact is None
                else int(last_contact),
                response=data)
        return cb

    @classmethod
    def list_of(klass, record):
        # map helper for endpoints returning a JSON array of records
        def map(data):
            return [record.from_json(x) for x in data or []]
        return map


class HTTPClient(metaclass=abc.ABCMeta):
    def __init__(self, host='127.0.0.1', port=8500, scheme='http',
                 verify=True, cert=None):
        self.host = host
        self.port = port
        self.scheme = scheme
        self.verify = verify
        self.base_uri = '%s://%s:%s' % (self.scheme, self.host, self.port)
        self.cert = cert

    def uri(self, path, params=None):
        uri = self.base_uri + quote(path, safe='/:')
        if params:
            uri = '%s?%s' % (uri, urlencode(params))
        return uri

    @staticmethod
    def check_cancel(cancel, method, uri):
        """
        Raises Cancelled if the *cancel* signal (anything with an is_set
        method) has been set.
        """
        if cancel is not None and cancel.is_set():
            log.debug('cancelled %s %s', method, uri)
            raise Cancelled('%s %s' % (method, uri))

    @abc.abstractmethod
    def get(self, callback, path, params=None, cancel=None):
        raise NotImplementedError

    @abc.abstractmethod
    def put(self, callback, path, params=None, data='', cancel=None):
        raise NotImplementedError

    @abc.abstractmethod
    def delete(self, callback, path, params=None, data=None, cancel=None):
        raise NotImplementedError

    @abc.abstractmethod
    def post(self, callback, path, params=None, data='', cancel=None):
        raise NotImplementedError


class Consul(object):
    def __init__(
            self,
            host='127.0.0.1',
            port=8500,
            token=None,
            scheme='http',
            consistency='default',
            dc=None,
            verify=True,
            cert=None):
        """
        *token* is an optional `ACL token`_. If supplied it will be used by
        default for all requests made with this client session. It's still
        possible to override this token by passing a token explicitly for a
        request.

        *consistency* sets the consistency mode to use by default for all reads
        that support the consistency option. It's still possible to override
        this by passing explicitly for a given request. *consistency* can be
        either 'default', 'consistent' or 'stale'.

        *dc* is the datacenter that this agent will communicate with.
        By default the datacenter of the host is used.

        *verify* is whether to verify the SSL certificate for HTTPS requests

        *cert* client side certificates for HTTPS requests

        The CONSUL_HTTP_ADDR, CONSUL_HTTP_TOKEN, CONSUL_HTTP_SSL and
        CONSUL_HTTP_SSL_VERIFY environment variables take precedence over
        the matching arguments.
        """
        addr = os.getenv('CONSUL_HTTP_ADDR')
        if addr:
            host, port, scheme = self._parse_addr(addr, scheme)
        use_ssl = os.getenv('CONSUL_HTTP_SSL')
        if use_ssl is not None:
            scheme = 'https' if use_ssl == 'true' else 'http'
        if os.getenv('CONSUL_HTTP_SSL_VERIFY') is not None:
            verify = os.getenv('CONSUL_HTTP_SSL_VERIFY') == 'true'

        self.http = self.connect(host, port, scheme, verify, cert)
        self.token = os.getenv('CONSUL_HTTP_TOKEN', token)
        self.scheme = scheme
        self.dc = dc
        assert consistency in ('default', 'consistent', 'stale'), \
            'consistency must be either default, consistent or stale'
        self.consistency = consistency

        self.operator = Consul.Operator(self)
        self.partition = Consul.Partition(self)

    @staticmethod
    def _parse_addr(addr, scheme):
        if addr.startswith('unix://'):
            return addr, None, scheme
        for prefix in ('http://', 'https://'):
            if addr.startswith(prefix):
                scheme = prefix[:-3]
                addr = addr[len(prefix):]
        try:
            host, port = addr.split(':')
        except ValueError:
            raise ConsulException('CONSUL_HTTP_ADDR (%s) invalid, '
                                  'does not match <host>:<port>'
                                  % os.getenv('CONSUL_HTTP_ADDR'))
        return host, port, scheme

    def connect(self, host, port, scheme, verify=True, cert=None):
        raise NotImplementedError

    def _write_params(self, dc=None, token=None):
        params = []
        dc = dc or self.dc
        if dc:
            params.append(('dc', dc))
        token = token or self.token
        if token:
            params.append(('token', token))
        return params

    def _query_params(
            self,
            dc=None,
            token=None,
            consistency=None,
            index=None,
            wait=None):
        params = self._write_params(dc=dc, token=token)
        consistency = consistency or self.consistency
        if consistency in ('consistent', 'stale'):
            params.append((consistency, '1'))
        if index:
            params.append(('index', index))
            if wait:
                params.append(('wait', wait))
        return params

    class Operator(object):
        """
        The Operator endpoints provide cluster-level tools for Consul
        operators: inspecting and repairing the Raft peer set, managing the
        gossip encryption keyring, network areas between datacenters, the
        license and LAN segments.

        Read methods accept *dc*, *token*, *consistency*, *index* and *wait*
        and return a QueryResult. Write methods accept *dc* and *token*.
        Omitted options fall back to the client defaults. Every method
        accepts *cancel*, an event-like object; once it is set the request
        is abandoned and *Cancelled* is raised.
        """
        def __init__(self, agent):
            self.agent = agent

        def raft_config(
                self,
                dc=None,
                token=None,
                consistency=None,
                index=None,
                wait=None,
                cancel=None):
            """
            Returns the current Raft peer set as a RaftConfiguration.

            The configuration looks like this::

                {
                    "Servers": [
                        {
                            "ID": "127.0.0.1:8300",
                            "Node": "alice",
                            "Address": "127.0.0.1:8300",
                            "Leader": true,
                            "Voter": true
                        }
                    ],
                    "Index": 22
                }
            """
            params = self.agent._query_params(
                dc=dc, token=token, consistency=consistency,
                index=index, wait=wait)
            return self.agent.http.get(
                CB.query(map=RaftConfiguration.from_json),
                '/v1/operator/raft/configuration',
                params=params, cancel=cancel)

        def raft_remove_peer(self, address, dc=None, token=None,
                             cancel=None):
            """
            Kicks a stale peer, one that is in the Raft quorum but no
            longer known to Serf or the catalog, by *address* in the form
            "IP:port".
            """
            # Consul addresses peers by query parameter until the
            # /v1/operator/raft/peer/<id> form exists
            params = self.agent._write_params(dc=dc, token=token)
            params.append(('address', address))
            return self.agent.http.delete(
                CB.bool(), '/v1/operator/raft/peer',
                params=params, cancel=cancel)

        def keyring_install(self, key, dc=None, token=None, cancel=None):
            """
            Installs a new gossip encryption *key* into the cluster.
            """
            return self.agent.http.post(
                CB.bool(), '/v1/operator/keyring',
                params=self.agent._write_params(dc=dc, token=token),
                data=json.dumps({'Key': key}), cancel=cancel)

        def keyring_list(
                self,
                local_only=False,
                relay_factor=None,
                dc=None,
                token=None,
                consistency=None,
                index=None,
                wait=None,
                cancel=None):
            """
            Lists the gossip keys installed in the cluster, one
            KeyringResponse per keyring (each LAN pool and the WAN pool).

            *local_only* restricts the query to the local datacenter.

            *relay_factor* asks nodes to relay their response through this
            many other nodes, from 0 to 5.

            Nodes that fail to answer are reported by Consul inside the
            response; they are not turned into an error here.
            """
            params = self.agent._query_params(
                dc=dc, token=token, consistency=consistency,
                index=index, wait=wait)
            if local_only:
                params.append(('local-only', 'true'))
            if relay_factor is not None:
                params.append(('relay-factor', relay_factor))
            return self.agent.http.get(
                CB.query(map=CB.list_of(KeyringResponse)),
                '/v1/operator/keyring', params=params, cancel=cancel)

        def keyring_remove(self, key, dc=None, token=None, cancel=None):
            """
            Removes the gossip encryption *key* from the cluster. The active
            key can't be removed.
            """
            return self.agent.http.delete(
                CB.bool(), '/v1/operator/keyring',
                params=self.agent._write_params(dc=dc, token=token),
                data=json.dumps({'Key': key}), cancel=cancel)

        def keyring_use(self, key, dc=None, token=None, cancel=None):
            """
            Changes the active gossip encryption key to *key*, which must
            already be installed.
            """
            return self.agent.http.put(
                CB.bool(), '/v1/operator/keyring',
                params=self.agent._write_params(dc=dc, token=token),
                data=json.dumps({'Key': key}), cancel=cancel)

        def license(
                self,
                dc=None,
                token=None,
                consistency=None,
                index=None,
                wait=None,
                cancel=None):
            """
            Returns the cluster's ConsulLicense, optionally for the
            datacenter *dc*.
            """
            params = self.agent._query_params(
                dc=dc, token=token, consistency=consistency,
                index=index, wait=wait)
            return self.agent.http.get(
                CB.query(map=ConsulLicense.from_json),
                '/v1/operator/license', params=params, cancel=cancel)

        def segment_list(
                self,
                dc=None,
                token=None,
                consistency=None,
                index=None,
                wait=None,
                cancel=None):
            """
            Returns the names of all the available LAN segments.
            """
            params = self.agent._query_params(
                dc=dc, token=token, consistency=consistency,
                index=index, wait=wait)
            return self.agent.http.get(
                CB.query(map=lambda data: list(data or [])),
                '/v1/operator/segment', params=params, cancel=cancel)

        def area_create(self, area, dc=None, token=None, cancel=None):
            """
            Creates a new network area from the AreaRequest *area* and
            returns its generated ID.
            """
            return self.agent.http.post(
                CB.id(), '/v1/operator/area',
                params=self.agent._write_params(dc=dc, token=token),
                data=json.dumps(area.to_json()), cancel=cancel)

        def area_list(
                self,
                dc=None,
                token=None,
                consistency=None,
                index=None,
                wait=None,
                cancel=None):
            """
            Returns all the network areas as a list of Area.
            """
            params = self.agent._query_params(
                dc=dc, token=token, consistency=consistency,
                index=index, wait=wait)
            return self.agent.http.get(
                CB.query(map=CB.list_of(Area)),
                '/v1/operator/area', params=params, cancel=cancel)

        def area_update(self, area_id, area, dc=None, token=None,
                        cancel=None):
            """
            Replaces the configuration of the network area *area_id* with
            the AreaRequest *area*. Returns the area's ID.
            """
            return self.agent.http.put(
                CB.id(), '/v1/operator/area/%s' % area_id,
                params=self.agent._write_params(dc=dc, token=token),
                data=json.dumps(area.to_json()), cancel=cancel)

        def area_get(
                self,
                area_id,
                dc=None,
                token=None,
                consistency=None,
                index=None,
                wait=None,
                cancel=None):
            """
            Returns the network area *area_id*. Consul answers with a list
            holding the single Area.
            """
            params = self.agent._query_params(
                dc=dc, token=token, consistency=consistency,
                index=index, wait=wait)
            return self.agent.http.get(
                CB.query(map=CB.list_of(Area)),
                '/v1/operator/area/%s' % area_id,
                params=params, cancel=cancel)

        def area_delete(self, area_id, dc=None, token=None, cancel=None):
            """
            Deletes the network area *area_id*.
            """
            return self.agent.http.delete(
                CB.bool(), '/v1/operator/area/%s' % area_id,
                params=self.agent._write_params(dc=dc, token=token),
                cancel=cancel)

        def area_join(self, area_id, addresses, dc=None, token=None,
                      cancel=None):
            """
            Attempts to join each of *addresses* to the network area
            *area_id*.

            Returns one AreaJoinResponse per address, in the order given.
            Some joins may fail while others succeed; check *joined* and
            *error* on each.
            """
            return self.agent.http.put(
                CB.json(map=CB.list_of(AreaJoinResponse)),
                '/v1/operator/area/%s/join' % area_id,
                params=self.agent._write_params(dc=dc, token=token),
                data=json.dumps(list(addresses)), cancel=cancel)

    class Partition(object):
        """
        Admin partitions (Consul Enterprise) are tenancy boundaries within a
        datacenter.
        """
        def __init__(self, agent):
            self.agent = agent

        def create(self, name, description=None, dc=None, token=None,
                   cancel=None):
            """
            Creates the admin partition *name* and returns it as a
            PartitionResponse.
            """
            payload = {'Name': name}
            if description is not None:
                payload['Description'] = description
            return self.agent.http.put(
                CB.json(map=PartitionResponse.from_json), '/v1/partition',
                params=self.agent._write_params(dc=dc, token=token),
                data=json.dumps(payload), cancel=cancel)
