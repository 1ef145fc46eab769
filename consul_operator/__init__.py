__version__ = '0.1.0'

from consul_operator.std import Consul

from consul_operator.base import AreaRequest
from consul_operator.base import Area
from consul_operator.base import AreaJoinResponse
from consul_operator.base import ConsulLicense
from consul_operator.base import Flags
from consul_operator.base import KeyringResponse
from consul_operator.base import License
from consul_operator.base import PartitionResponse
from consul_operator.base import QueryResult
from consul_operator.base import RaftConfiguration
from consul_operator.base import RaftServer

from consul_operator.base import ConsulException
from consul_operator.base import ACLPermissionDenied
from consul_operator.base import ACLDisabled
from consul_operator.base import BadRequest
from consul_operator.base import Cancelled
from consul_operator.base import ClientError
from consul_operator.base import NotFound
from consul_operator.base import Timeout
