# Copyright (c) 2013 Hewlett-Packard Development Company, L.P.
#
# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
# You may obtain a copy of the License at
#
#    http://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or
# implied.
# See the License for the specific language governing permissions and
# limitations under the License.

from setuptools import find_packages
from setuptools import setup

setup(
    name='ipam-reconciler',
    packages=find_packages(include=['ipam_reconciler', 'ipam_reconciler.*']),
    python_requires='>=3.8',
    install_requires=[
        'etcd3gw>=2.4.0',
        'netaddr',
        'oslo.config',
        'oslo.log',
        'requests',
    ],
    extras_require={
        'test': [
            'mock',
            'pytest',
        ],
    },
    entry_points={
        'console_scripts': [
            'ipam-reconciler = ipam_reconciler.reconciler_main:main',
        ],
        'oslo.config.opts': [
            'ipam_reconciler = ipam_reconciler.common.config:list_opts',
        ],
    },
    version="0.0.0",
)
