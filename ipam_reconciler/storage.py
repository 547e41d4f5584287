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


class IPPool(object):
    """One pool of IP reservations, as read from the store.

    An IPPool remembers the version of the pool it was read at.  update()
    only succeeds if the stored pool is still at that version; otherwise it
    raises CommitConflict and the caller must re-read.

    Subclasses implement allocations() and update() for a particular
    backend.
    """
    def __init__(self, name, ip_range):
        self.name = name
        self.ip_range = ip_range

    def allocations(self):
        """Return the reservations as read, as a new list."""
        raise NotImplementedError()

    def update(self, reservations):
        """Replace the pool's reservations.

        Raises CommitConflict if the pool changed since it was read, or
        CommitFailure if the write failed for any other reason.
        """
        raise NotImplementedError()

    def __repr__(self):
        return "%s(%r, %r)" % (type(self).__name__, self.name, self.ip_range)


class PoolStore(object):
    """Access to every IP pool in the cluster."""

    def list_pools(self):
        """Return a list of IPPool, one per pool.

        Raises PoolListUnavailable if the pools cannot be enumerated.
        """
        raise NotImplementedError()

    def get_pool(self, name):
        """Return the named IPPool, freshly read.

        Raises KeyError if there is no such pool.
        """
        raise NotImplementedError()


class WorkloadInventory(object):
    """Source of the identities of the workloads that are running now."""

    def list_live_workloads(self):
        """Return the complete set of live pod refs.

        Raises InventoryUnavailable rather than return a partial set.
        """
        raise NotImplementedError()
