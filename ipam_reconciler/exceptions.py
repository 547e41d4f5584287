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

# The various Exceptions that can be raised while reconciling IP pools are
# collected here.


class ReconcilerError(Exception):
    """
    General reconciler exception.
    """
    pass


class DatastoreError(ReconcilerError):
    """
    A pool read from the datastore could not be decoded.
    """
    pass


class InventoryUnavailable(ReconcilerError):
    """
    The set of live workloads could not be enumerated completely.  A pass
    must never continue with a partial live set.
    """
    pass


class PoolListUnavailable(ReconcilerError):
    """
    The IP pools could not be enumerated.
    """
    pass


class ReservationNotFound(ReconcilerError):
    """
    No reservation in the list is held by the given owner.
    """
    def __init__(self, owner):
        super(ReservationNotFound, self).__init__(
            "no reservation found for owner %r" % owner)
        self.owner = owner


class ReclaimError(ReconcilerError):
    """
    Base for errors raised while reclaiming orphans.

    removed holds the reservations released from pools that were
    committed before the error occurred.
    """
    def __init__(self, message, removed=None):
        super(ReclaimError, self).__init__(message)
        self.removed = list(removed or [])


class OwnerNotFoundDuringReclaim(ReclaimError):
    """
    An owner found orphaned during detection was gone by the time its
    reservation was removed.
    """
    def __init__(self, pool_name, pod_ref, removed=None):
        super(OwnerNotFoundDuringReclaim, self).__init__(
            "pod ref %s vanished from pool %s during reclaim" %
            (pod_ref, pool_name), removed)
        self.pool_name = pool_name
        self.pod_ref = pod_ref


class CommitConflict(ReclaimError):
    """
    The store rejected an update because the pool changed since it was
    read.  Retryable by re-running the whole pass.
    """
    def __init__(self, pool_name, removed=None):
        super(CommitConflict, self).__init__(
            "pool %s was modified by another writer" % pool_name, removed)
        self.pool_name = pool_name


class CommitFailure(ReclaimError):
    """
    The store failed to write a pool for a reason other than a conflict.
    """
    def __init__(self, pool_name, cause, removed=None):
        super(CommitFailure, self).__init__(
            "failed to update pool %s: %s" % (pool_name, cause), removed)
        self.pool_name = pool_name
        self.cause = cause


class ReclaimIncomplete(ReclaimError):
    """
    One or more pools could not be reclaimed; the others were.

    failures maps pool name to the error that abandoned that pool.
    """
    def __init__(self, failures, removed=None):
        super(ReclaimIncomplete, self).__init__(
            "failed to reclaim %d pool(s): %s" %
            (len(failures), ", ".join(sorted(failures))), removed)
        self.failures = failures


class ReconcileCancelled(ReclaimError):
    """
    The pass was cancelled before all pools were committed.
    """
    def __init__(self, removed=None):
        super(ReconcileCancelled, self).__init__(
            "reconcile pass cancelled", removed)
