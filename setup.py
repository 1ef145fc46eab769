import re
import os

from setuptools import setup

# =============================================================================

requirements = [
    x.strip() for x
    in open('requirements.txt').readlines()
    if x.strip() and not x.startswith('#')]


description = "Python client for the Consul operator API " \
    "(http://www.consul.io/)"


here = os.path.dirname(os.path.abspath(__file__))
with open(os.path.join(here, 'consul_operator', '__init__.py')) as fh:
    version = re.search(r"__version__ = '([^']+)'", fh.read()).group(1)

# =============================================================================

setup(
    name='consul-operator',
    version=version,
    license='MIT',
    description=description,
    long_description=open(os.path.join(here, 'README.md')).read(),
    long_description_content_type='text/markdown',
    packages=['consul_operator'],
    install_requires=requirements,
    python_requires='>=3.8',
    extras_require={
        'aio': ['aiohttp'],
        'tornado': ['tornado'],
        'twisted': ['twisted', 'treq'],
        'unixsocket': ['requests-unixsocket'],
        'test': [
            'pytest',
            'pytest-twisted',
            'aiohttp',
            'tornado',
            'twisted',
            'treq',
        ],
    },
    classifiers=[
        'Intended Audience :: Developers',
        'License :: OSI Approved :: MIT License',
        'Programming Language :: Python :: 3',
    ],
)
