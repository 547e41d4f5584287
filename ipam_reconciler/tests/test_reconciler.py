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
"""
test_reconciler
~~~~~~~~~~~~~~~

Tests for orphan detection and reclaim.
"""

import logging
import threading
import unittest

import mock

from ipam_reconciler.common.config import COMMIT_FAILURE_ABORT
from ipam_reconciler.datamodel import IPReservation
from ipam_reconciler.exceptions import CommitConflict
from ipam_reconciler.exceptions import CommitFailure
from ipam_reconciler.exceptions import InventoryUnavailable
from ipam_reconciler.exceptions import OwnerNotFoundDuringReclaim
from ipam_reconciler.exceptions import PoolListUnavailable
from ipam_reconciler.exceptions import ReclaimIncomplete
from ipam_reconciler.exceptions import ReconcileCancelled
from ipam_reconciler import reconciler
from ipam_reconciler.tests.stub_store import StubInventory
from ipam_reconciler.tests.stub_store import StubPoolStore

_log = logging.getLogger(__name__)

RANGE = "10.0.0.0/24"


def res(ip, pod_ref, container_id=""):
    return IPReservation(ip, pod_ref, container_id)


class TestFindOrphanedIPs(unittest.TestCase):
    def setUp(self):
        self.store = StubPoolStore()

    def test_orphans_in_scan_order(self):
        self.store.add_pool("pool1", RANGE, [res("10.0.0.1", "ns/a"),
                                             res("10.0.0.2", "ns/b"),
                                             res("10.0.0.3", "ns/c"),
                                             res("10.0.0.4", "ns/d")])
        orphaned = reconciler.find_orphaned_ips(self.store.get_pool("pool1"),
                                                {"ns/a", "ns/c"})
        self.assertEqual(orphaned.allocations, [res("10.0.0.2", "ns/b"),
                                                res("10.0.0.4", "ns/d")])
        self.assertEqual(orphaned.pod_refs(), ["ns/b", "ns/d"])
        self.assertEqual(orphaned.anomalies, [])

    def test_missing_pod_ref_is_anomaly(self):
        self.store.add_pool("pool1", RANGE, [res("10.0.0.5", "")])
        orphaned = reconciler.find_orphaned_ips(self.store.get_pool("pool1"),
                                                set())
        self.assertEqual(orphaned.allocations, [])
        self.assertEqual(orphaned.anomalies, [res("10.0.0.5", "")])

    def test_does_not_write(self):
        pool = mock.Mock()
        pool.allocations.return_value = [res("10.0.0.1", "ns/a")]
        reconciler.find_orphaned_ips(pool, set())
        self.assertFalse(pool.update.called)


class TestComputeCleanedUpIPs(unittest.TestCase):
    def test_difference_by_address(self):
        old = [res("10.0.0.1", "ns/a"),
               res("10.0.0.2", "ns/b"),
               res("10.0.0.3", "ns/c")]
        new = [res("10.0.0.1", "ns/a"), res("10.0.0.3", "ns/other")]
        self.assertEqual(reconciler.compute_cleaned_up_ips(old, new),
                         [res("10.0.0.2", "ns/b")])

    def test_nothing_removed(self):
        old = [res("10.0.0.1", "ns/a")]
        self.assertEqual(reconciler.compute_cleaned_up_ips(old, old), [])


class TestReconcileLooper(unittest.TestCase):
    def setUp(self):
        self.store = StubPoolStore()
        self.inventory = StubInventory()
        self.looper = reconciler.ReconcileLooper(self.inventory, self.store)

    def test_scenario_a(self):
        self.store.add_pool("pool1", RANGE, [res("10.0.0.1", "podA"),
                                             res("10.0.0.2", "podB"),
                                             res("10.0.0.3", "podC")])
        self.inventory.pod_refs = {"podA", "podC"}

        removed = self.looper.reconcile()

        self.assertEqual(removed, [res("10.0.0.2", "podB")])
        self.assertEqual(self.store.reservations("pool1"),
                         [res("10.0.0.1", "podA"), res("10.0.0.3", "podC")])

    def test_scenario_b_anomaly_retained(self):
        self.store.add_pool("pool1", RANGE, [res("10.0.0.5", "")])

        removed = self.looper.reconcile()

        self.assertEqual(removed, [])
        self.assertEqual(self.looper.anomalies, [res("10.0.0.5", "")])
        self.assertEqual(self.store.reservations("pool1"),
                         [res("10.0.0.5", "")])
        self.assertEqual(self.store.update_calls, [])

    def test_scenario_c_clean_pool_not_written(self):
        self.store.add_pool("dirty", RANGE, [res("10.0.0.1", "ns/live"),
                                             res("10.0.0.2", "ns/dead")])
        self.store.add_pool("clean", "10.1.0.0/24",
                            [res("10.1.0.1", "ns/live")])
        self.inventory.pod_refs = {"ns/live"}

        self.looper.reconcile()

        self.assertEqual([name for name, _ in self.store.update_calls],
                         ["dirty"])

    def test_scenario_d_conflict_then_converge(self):
        self.store.add_pool("pool1", RANGE, [res("10.0.0.1", "ns/a"),
                                             res("10.0.0.2", "ns/dead")])
        self.inventory.pod_refs = {"ns/a", "ns/new"}

        self.looper.find_orphaned_ips_per_pool()
        # Another node allocates between detect and reclaim.
        self.store.allocate("pool1", "10.0.0.3", "ns/new")
        with self.assertRaises(CommitConflict) as cm:
            self.looper.reconcile_ip_pools()
        self.assertEqual(cm.exception.pool_name, "pool1")
        self.assertEqual(cm.exception.removed, [])
        self.assertEqual(self.store.reservations("pool1"),
                         [res("10.0.0.1", "ns/a"),
                          res("10.0.0.2", "ns/dead"),
                          res("10.0.0.3", "ns/new")])

        removed = self.looper.reconcile()

        self.assertEqual(removed, [res("10.0.0.2", "ns/dead")])
        self.assertEqual(self.store.reservations("pool1"),
                         [res("10.0.0.1", "ns/a"), res("10.0.0.3", "ns/new")])

    def test_second_pass_is_noop(self):
        self.store.add_pool("pool1", RANGE, [res("10.0.0.1", "ns/a"),
                                             res("10.0.0.2", "ns/b")])
        self.inventory.pod_refs = {"ns/a"}

        self.assertEqual(len(self.looper.reconcile()), 1)
        self.assertEqual(self.looper.reconcile(), [])
        self.assertEqual(len(self.store.update_calls), 1)

    def test_single_commit_per_pool(self):
        reservations = [res("10.0.0.%d" % i, "ns/pod%d" % i)
                        for i in range(1, 11)]
        self.store.add_pool("pool1", RANGE, reservations)
        self.inventory.pod_refs = {"ns/pod2", "ns/pod5", "ns/pod9"}

        removed = self.looper.reconcile()

        self.assertEqual(len(self.store.update_calls), 1)
        _, committed = self.store.update_calls[0]
        self.assertEqual(len(committed), len(reservations) - 7)
        self.assertEqual(len(removed), 7)

    def test_exact_set_difference_and_preservation(self):
        reservations = [res("10.0.0.1", "ns/a", "c1"),
                        res("10.0.0.2", "", "c2"),
                        res("10.0.0.3", "ns/b", "c3"),
                        res("10.0.0.4", "ns/c", "c4"),
                        res("10.0.0.5", "ns/b", "c5")]
        self.store.add_pool("pool1", RANGE, reservations)
        self.inventory.pod_refs = {"ns/c"}

        removed = self.looper.reconcile()

        expected = [r for r in reservations
                    if r.pod_ref and r.pod_ref not in self.inventory.pod_refs]
        self.assertEqual(removed, expected)
        self.assertEqual(self.store.reservations("pool1"),
                         [res("10.0.0.2", "", "c2"),
                          res("10.0.0.4", "ns/c", "c4")])

    def test_live_set_read_once_per_pass(self):
        self.store.add_pool("pool1", RANGE, [res("10.0.0.1", "ns/a")])
        self.store.add_pool("pool2", "10.1.0.0/24", [res("10.1.0.1", "ns/b")])
        self.looper.reconcile()
        self.assertEqual(self.inventory.calls, 1)

    def test_inventory_unavailable_reads_no_pools(self):
        self.store.add_pool("pool1", RANGE, [res("10.0.0.1", "ns/a")])
        self.inventory.available = False
        self.store.list_pools = mock.Mock()

        self.assertRaises(InventoryUnavailable, self.looper.reconcile)
        self.assertFalse(self.store.list_pools.called)

    def test_pool_list_unavailable(self):
        self.store.list_exception = PoolListUnavailable("boom")
        self.assertRaises(PoolListUnavailable, self.looper.reconcile)

    def test_commit_failure_continues_by_default(self):
        self.store.add_pool("pool1", RANGE, [res("10.0.0.1", "ns/dead1")])
        self.store.add_pool("pool2", "10.1.0.0/24",
                            [res("10.1.0.1", "ns/dead2")])
        self.store.write_exceptions["pool1"] = CommitFailure("pool1", "io")

        with self.assertRaises(ReclaimIncomplete) as cm:
            self.looper.reconcile()

        self.assertEqual(list(cm.exception.failures), ["pool1"])
        self.assertEqual(cm.exception.removed, [res("10.1.0.1", "ns/dead2")])
        self.assertEqual(self.store.reservations("pool1"),
                         [res("10.0.0.1", "ns/dead1")])
        self.assertEqual(self.store.reservations("pool2"), [])

    def test_commit_failure_abort_policy(self):
        self.looper = reconciler.ReconcileLooper(
            self.inventory, self.store,
            commit_failure_policy=COMMIT_FAILURE_ABORT)
        self.store.add_pool("pool1", RANGE, [res("10.0.0.1", "ns/dead1")])
        self.store.add_pool("pool2", "10.1.0.0/24",
                            [res("10.1.0.1", "ns/dead2")])
        self.store.write_exceptions["pool1"] = CommitFailure("pool1", "io")

        self.assertRaises(CommitFailure, self.looper.reconcile)
        self.assertEqual([name for name, _ in self.store.update_calls],
                         ["pool1"])

    def test_conflict_keeps_earlier_pools_committed(self):
        self.store.add_pool("pool1", RANGE, [res("10.0.0.1", "ns/dead1")])
        self.store.add_pool("pool2", "10.1.0.0/24",
                            [res("10.1.0.1", "ns/dead2")])
        self.store.write_exceptions["pool2"] = CommitConflict("pool2")

        with self.assertRaises(CommitConflict) as cm:
            self.looper.reconcile()

        self.assertEqual(cm.exception.removed, [res("10.0.0.1", "ns/dead1")])
        self.assertEqual(self.store.reservations("pool1"), [])

    def test_owner_vanished_during_reclaim(self):
        pool = mock.Mock()
        pool.name = "pool1"
        pool.allocations.side_effect = [
            [res("10.0.0.1", "ns/dead")],
            [],
        ]
        self.store.list_pools = mock.Mock(return_value=[pool])

        with self.assertRaises(ReclaimIncomplete) as cm:
            self.looper.reconcile()

        error = cm.exception.failures["pool1"]
        self.assertIsInstance(error, OwnerNotFoundDuringReclaim)
        self.assertEqual(error.pod_ref, "ns/dead")
        self.assertFalse(pool.update.called)

    def test_cancelled_before_update(self):
        self.store.add_pool("pool1", RANGE, [res("10.0.0.1", "ns/dead")])
        cancel = threading.Event()
        cancel.set()

        self.assertRaises(ReconcileCancelled, self.looper.reconcile, cancel)
        self.assertEqual(self.store.update_calls, [])

    def test_cancelled_between_pools(self):
        self.store.add_pool("pool1", RANGE, [res("10.0.0.1", "ns/dead1")])
        self.store.add_pool("pool2", "10.1.0.0/24",
                            [res("10.1.0.1", "ns/dead2")])
        cancel = threading.Event()
        commit = self.store.commit

        def commit_then_cancel(pool, reservations):
            commit(pool, reservations)
            cancel.set()
        self.store.commit = commit_then_cancel

        with self.assertRaises(ReconcileCancelled) as cm:
            self.looper.reconcile(cancel)

        self.assertEqual(cm.exception.removed, [res("10.0.0.1", "ns/dead1")])
        self.assertEqual(self.store.reservations("pool2"),
                         [res("10.1.0.1", "ns/dead2")])

    def test_bad_policy(self):
        self.assertRaises(AssertionError, reconciler.ReconcileLooper,
                          self.inventory, self.store,
                          commit_failure_policy="sometimes")
