# -*- coding: utf-8 -*-
# Copyright (c) 2018 Tigera, Inc. All rights reserved.
#
# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
# You may obtain a copy of the License at
#
#     http://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.

import json

from etcd3gw.exceptions import Etcd3Exception
from oslo_log import log

from ipam_reconciler import datamodel
from ipam_reconciler import etcdv3
from ipam_reconciler.exceptions import CommitConflict
from ipam_reconciler.exceptions import CommitFailure
from ipam_reconciler.exceptions import DatastoreError
from ipam_reconciler.exceptions import PoolListUnavailable
from ipam_reconciler.storage import IPPool
from ipam_reconciler.storage import PoolStore

LOG = log.getLogger(__name__)


class EtcdIPPool(IPPool):
    """An IP pool stored as one JSON value under one etcd key.

    Writes are etcd transactions that only succeed if the key's
    mod_revision is still the one this object was read at.  After a
    successful write the object is stale and a further update() is refused
    as a conflict; re-read the pool to write it again.
    """
    def __init__(self, key, name, data, mod_revision):
        super(EtcdIPPool, self).__init__(name, data[datamodel.POOL_RANGE])
        self.key = key
        self.mod_revision = mod_revision
        self._data = data
        self._reservations = datamodel.decode_allocations(data)

    def allocations(self):
        return list(self._reservations)

    def update(self, reservations):
        if self.mod_revision is None:
            LOG.warning("Pool %s already written through this handle",
                        self.name)
            raise CommitConflict(self.name)
        value = json.dumps(datamodel.encode_allocations(self._data,
                                                        reservations))
        try:
            succeeded = self._write(value)
        except Etcd3Exception as e:
            raise CommitFailure(self.name, e)
        if not succeeded:
            LOG.info("Pool %s changed since revision %s",
                     self.name, self.mod_revision)
            raise CommitConflict(self.name)
        self.mod_revision = None
        self._reservations = list(reservations)

    @etcdv3.logging_exceptions
    def _write(self, value):
        return etcdv3.put(self.key, value, mod_revision=self.mod_revision)


class EtcdPoolStore(PoolStore):
    """Every pool stored under a common etcd prefix."""

    def __init__(self, prefix):
        self.prefix = prefix

    def list_pools(self):
        try:
            items = self._read_all()
        except Etcd3Exception as e:
            raise PoolListUnavailable("failed to retrieve all IP pools: %s" %
                                      e)
        pools = []
        for key, value, mod_revision in items:
            name = datamodel.pool_name_from_key(self.prefix, key)
            try:
                pools.append(self._build_pool(key, name, value, mod_revision))
            except DatastoreError as e:
                LOG.warning("etcd value for pool %s not valid, so ignoring "
                            "(%s)", name, e)
        LOG.debug("Read %d pool(s) from etcd", len(pools))
        return pools

    def get_pool(self, name):
        key = datamodel.key_for_pool(self.prefix, name)
        try:
            value, mod_revision = self._read(key)
        except etcdv3.KeyNotFound:
            raise KeyError(name)
        return self._build_pool(key, name, value, mod_revision)

    @etcdv3.logging_exceptions
    def _read_all(self):
        return etcdv3.get_prefix(self.prefix)

    @etcdv3.logging_exceptions
    def _read(self, key):
        return etcdv3.get(key)

    def _build_pool(self, key, name, value, mod_revision):
        return EtcdIPPool(key, name, datamodel.parse_pool(value), mod_revision)
