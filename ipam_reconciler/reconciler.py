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

from oslo_log import log

from ipam_reconciler import allocate
from ipam_reconciler.common.config import COMMIT_FAILURE_ABORT
from ipam_reconciler.common.config import COMMIT_FAILURE_CONTINUE
from ipam_reconciler.exceptions import CommitFailure
from ipam_reconciler.exceptions import OwnerNotFoundDuringReclaim
from ipam_reconciler.exceptions import ReclaimError
from ipam_reconciler.exceptions import ReclaimIncomplete
from ipam_reconciler.exceptions import ReconcileCancelled
from ipam_reconciler.exceptions import ReservationNotFound

LOG = log.getLogger(__name__)


class OrphanedIPReservations(object):
    """The reservations of one pool whose owners are no longer running."""

    def __init__(self, pool):
        self.pool = pool

        self.allocations = []
        """
        Orphaned reservations, in the order the pool listed them.
        """

        self.anomalies = []
        """
        Reservations with no recorded owner.  Never reclaimed.
        """

    def pod_refs(self):
        return [allocation.pod_ref for allocation in self.allocations]


def find_orphaned_ips(pool, live_pod_refs):
    """Sort a pool's reservations against the set of live pod refs.

    Returns an OrphanedIPReservations for the pool.  Does no I/O.
    """
    orphaned_ip = OrphanedIPReservations(pool)
    for allocation in pool.allocations():
        LOG.debug("the IP reservation: %s", allocation)
        if not allocation.pod_ref:
            LOG.error("pod ref missing for allocation in pool %s: %s",
                      pool.name, allocation)
            orphaned_ip.anomalies.append(allocation)
            continue
        if allocation.pod_ref not in live_pod_refs:
            LOG.debug("pod ref %s is not listed in the live pods list",
                      allocation.pod_ref)
            orphaned_ip.allocations.append(allocation)
    return orphaned_ip


def compute_cleaned_up_ips(old_reservations, new_reservations):
    """Return the reservations in old_reservations whose address is not in
    new_reservations, in their original order.
    """
    ledger = set(str(reservation.ip) for reservation in new_reservations)
    return [reservation for reservation in old_reservations
            if str(reservation.ip) not in ledger]


class ReconcileLooper(object):
    """Garbage collector for IP reservations held by vanished workloads.

    Each call to reconcile() is one stateless pass in two phases:

    - Detect: read the set of live pod refs once, then read every pool and
      note the reservations whose pod ref is not in that set.  Reservations
      with no pod ref at all are reported as anomalies and left alone.

    - Reclaim: for each pool with orphans, remove every orphaned owner's
      reservation from the list read in the detect phase and write the
      result back with a single update.  The update only succeeds if the
      pool is unchanged since it was read, so an allocation made by another
      node in the meantime is never overwritten; instead the pass fails with
      CommitConflict and can be re-run from scratch.

    A CommitConflict always ends the pass.  For other per-pool failures the
    commit_failure_policy decides: 'continue' skips the pool and raises
    ReclaimIncomplete once every other pool has been handled, 'abort' raises
    straight away.  Pools committed before a failure stay committed; the
    raised error's removed attribute lists what they released.
    """
    def __init__(self, inventory, pool_store,
                 commit_failure_policy=COMMIT_FAILURE_CONTINUE):
        assert commit_failure_policy in (COMMIT_FAILURE_CONTINUE,
                                         COMMIT_FAILURE_ABORT), \
            "unknown commit failure policy %r" % commit_failure_policy
        self.inventory = inventory
        self.pool_store = pool_store
        self.commit_failure_policy = commit_failure_policy
        self.live_pod_refs = frozenset()
        self.orphaned_ips = []
        self.anomalies = []

    def reconcile(self, cancel_event=None):
        """Run one detect and reclaim pass.

        - cancel_event: optional threading.Event.  If it is set, the pass
          stops before writing the next pool and raises ReconcileCancelled.

        Returns the list of reservations that were removed.
        """
        self.find_orphaned_ips_per_pool()
        return self.reconcile_ip_pools(cancel_event)

    def find_orphaned_ips_per_pool(self):
        self.orphaned_ips = []
        self.anomalies = []

        # The live set must be complete before any pool is looked at.
        self.live_pod_refs = frozenset(self.inventory.list_live_workloads())
        ip_pools = self.pool_store.list_pools()
        LOG.info("Looking for orphaned IPs in %d pool(s) against %d live "
                 "pod(s)", len(ip_pools), len(self.live_pod_refs))

        for pool in ip_pools:
            orphaned_ip = find_orphaned_ips(pool, self.live_pod_refs)
            self.anomalies.extend(orphaned_ip.anomalies)
            if orphaned_ip.allocations:
                LOG.info("Pool %s has %d orphaned IP(s)",
                         pool.name, len(orphaned_ip.allocations))
                self.orphaned_ips.append(orphaned_ip)
        return self.orphaned_ips

    def reconcile_ip_pools(self, cancel_event=None):
        total_cleaned_up_ips = []
        failures = {}
        for orphaned_ip in self.orphaned_ips:
            pool = orphaned_ip.pool
            try:
                cleaned_up = self._reclaim_pool(orphaned_ip, cancel_event)
            except (CommitFailure, OwnerNotFoundDuringReclaim) as e:
                e.removed = list(total_cleaned_up_ips)
                if self.commit_failure_policy == COMMIT_FAILURE_ABORT:
                    raise
                LOG.warning("Skipping pool %s: %s", pool.name, e)
                failures[pool.name] = e
                continue
            except ReclaimError as e:
                e.removed = list(total_cleaned_up_ips)
                raise
            total_cleaned_up_ips.extend(cleaned_up)

        if failures:
            raise ReclaimIncomplete(failures, total_cleaned_up_ips)
        self.orphaned_ips = []
        return total_cleaned_up_ips

    def _reclaim_pool(self, orphaned_ip, cancel_event):
        pool = orphaned_ip.pool
        original_reservations = pool.allocations()
        current_reservations = list(original_reservations)
        for pod_ref in orphaned_ip.pod_refs():
            try:
                current_reservations, _ = allocate.iterate_for_deallocation(
                    current_reservations, pod_ref, allocate.match_by_pod_ref)
            except ReservationNotFound:
                raise OwnerNotFoundDuringReclaim(pool.name, pod_ref)

        if cancel_event is not None and cancel_event.is_set():
            LOG.warning("Reconcile cancelled before updating pool %s",
                        pool.name)
            raise ReconcileCancelled()

        LOG.debug("Going to update the reserve list of pool %s to: %s",
                  pool.name, [str(r.ip) for r in current_reservations])
        pool.update(current_reservations)
        cleaned_up = compute_cleaned_up_ips(original_reservations,
                                            current_reservations)
        for reservation in cleaned_up:
            LOG.info("Released %s from pool %s", reservation, pool.name)
        return cleaned_up
