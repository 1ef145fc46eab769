import subprocess
import platform
import socket
import shlex
import time
import json
import os

import requests
import pytest


def get_free_ports(num, host=None):
    if not host:
        host = '127.0.0.1'
    sockets = []
    ret = []
    for i in range(num):
        s = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
        s.bind((host, 0))
        ret.append(s.getsockname()[1])
        sockets.append(s)
    for s in sockets:
        s.close()
    return ret


def consul_binary():
    (system, node, release, version, machine, processor) = platform.uname()
    if system == 'Darwin':
        postfix = 'osx'
    else:
        postfix = 'linux64'
    return os.path.join(os.path.dirname(__file__), 'consul.'+postfix)


def start_consul_instance(tmpdir):
    """
    starts a consul dev agent in *tmpdir*

    returns: a tuple of the instances process object and the http port the
             instance is listening on
    """
    ports = dict(zip(
        ['http', 'serf_lan', 'serf_wan', 'server', 'dns'],
        get_free_ports(4) + [-1]))

    config = {'ports': ports, 'performance': {'raft_multiplier': 1}}
    with open(os.path.join(str(tmpdir), 'config.json'), 'w') as fh:
        fh.write(json.dumps(config))

    command = '{bin} agent -dev' \
              ' -bind=127.0.0.1' \
              ' -config-dir={dir}'
    command = command.format(bin=consul_binary(), dir=tmpdir).strip()
    command = shlex.split(command)

    p = subprocess.Popen(
        command, stdout=subprocess.PIPE, stderr=subprocess.PIPE)

    # wait for consul instance to elect itself
    base_uri = 'http://127.0.0.1:%s/v1/' % ports['http']

    while True:
        time.sleep(0.1)
        try:
            response = requests.get(base_uri + 'status/leader')
        except requests.ConnectionError:
            continue
        if response.text.strip() != '""':
            break

    return p, ports['http']


@pytest.fixture(scope="module")
def consul_instance(tmp_path_factory):
    if not os.path.exists(consul_binary()):
        pytest.skip('consul binary not available at %s' % consul_binary())
    p, port = start_consul_instance(tmp_path_factory.mktemp('consul'))
    yield port
    p.terminate()


@pytest.fixture
def consul_port(consul_instance):
    yield consul_instance
