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
import signal
import sys
import threading

from oslo_config import cfg
from oslo_log import log

from ipam_reconciler.common import config
from ipam_reconciler.etcd_store import EtcdPoolStore
from ipam_reconciler.exceptions import CommitConflict
from ipam_reconciler.exceptions import ReclaimError
from ipam_reconciler.exceptions import ReconcilerError
from ipam_reconciler.kubernetes import KubernetesInventory
from ipam_reconciler.reconciler import ReconcileLooper

LOG = log.getLogger(__name__)

PROJECT = 'ipam-reconciler'


def reconcile_with_retries(looper, retries, cancel_event=None):
    """Run a pass, re-running it from scratch after a CommitConflict.

    Gives up and re-raises after retries re-runs.  The removals made by
    conflicting attempts are kept and returned along with the final pass's,
    or added to the removed attribute of whatever error ends the run.
    """
    removed = []
    attempt = 0
    while True:
        try:
            removed.extend(looper.reconcile(cancel_event))
            return removed
        except ReclaimError as e:
            removed.extend(e.removed)
            if not isinstance(e, CommitConflict):
                e.removed = removed
                raise
            if attempt >= retries:
                LOG.error("Giving up after %d conflicting attempt(s)",
                          attempt + 1)
                e.removed = removed
                raise
            attempt += 1
            LOG.warning("%s; re-running reconcile (attempt %d of %d)",
                        e, attempt, retries)


def report(removed, anomalies, stream=None):
    """Write a JSON summary of a pass."""
    stream = stream or sys.stdout
    summary = {
        "removed": [reservation.to_dict() for reservation in removed],
        "anomalies": [reservation.to_dict() for reservation in anomalies],
    }
    stream.write(json.dumps(summary, indent=2) + "\n")
    stream.flush()


class ReconcileRunner(object):
    """Runs reconcile passes once or at an interval until stopped."""

    def __init__(self, looper, interval=0, timeout=0, retries=0):
        self.looper = looper
        self.interval = interval
        self.timeout = timeout
        self.retries = retries

        self.stop_event = threading.Event()
        """
        Set when the process is asked to exit.
        """

        self.pass_event = threading.Event()
        """
        Cancellation signal for the pass in progress.
        """

    def stop(self, *_):
        LOG.info("Stopping")
        self.stop_event.set()
        self.pass_event.set()

    def run(self):
        """Returns 0 if every pass succeeded, 1 otherwise."""
        rc = 0
        while not self.stop_event.is_set():
            if not self.run_pass():
                rc = 1
            if not self.interval:
                break
            self.stop_event.wait(self.interval)
        return rc

    def run_pass(self):
        self.pass_event = threading.Event()
        if self.stop_event.is_set():
            self.pass_event.set()
        timer = None
        if self.timeout:
            timer = threading.Timer(self.timeout, self.pass_event.set)
            timer.daemon = True
            timer.start()
        try:
            removed = reconcile_with_retries(self.looper, self.retries,
                                             self.pass_event)
        except ReconcilerError as e:
            LOG.error("Failed to reconcile IP pools: %s", e)
            if isinstance(e, ReclaimError):
                report(e.removed, self.looper.anomalies)
            return False
        finally:
            if timer is not None:
                timer.cancel()
        LOG.info("Reconcile pass removed %d IP reservation(s)", len(removed))
        report(removed, self.looper.anomalies)
        return True


def main(argv=None):
    log.register_options(cfg.CONF)
    config.register_options(cfg.CONF)
    cfg.CONF(sys.argv[1:] if argv is None else argv, project=PROJECT)
    log.setup(cfg.CONF, PROJECT)

    ipam_cfg = cfg.CONF.ipam
    looper = ReconcileLooper(
        KubernetesInventory.from_config(cfg.CONF.kubernetes),
        EtcdPoolStore(ipam_cfg.pool_prefix),
        commit_failure_policy=ipam_cfg.commit_failure_policy)
    runner = ReconcileRunner(looper,
                             interval=ipam_cfg.reconcile_interval,
                             timeout=ipam_cfg.reconcile_timeout,
                             retries=ipam_cfg.conflict_retries)
    signal.signal(signal.SIGTERM, runner.stop)
    signal.signal(signal.SIGINT, runner.stop)

    LOG.info("Beginning execution")
    return runner.run()


if __name__ == '__main__':  # pragma: no cover
    sys.exit(main())
