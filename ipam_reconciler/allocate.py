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

from ipam_reconciler.exceptions import ReservationNotFound

LOG = log.getLogger(__name__)

# Returned by a match function when no reservation matches.
NOT_FOUND = -1


def match_by_pod_ref(reservations, pod_ref):
    for idx, reservation in enumerate(reservations):
        if reservation.pod_ref == pod_ref:
            return idx
    return NOT_FOUND


def match_by_container_id(reservations, container_id):
    for idx, reservation in enumerate(reservations):
        if reservation.container_id == container_id:
            return idx
    return NOT_FOUND


def iterate_for_deallocation(reservations, owner, match_fn):
    """Remove the first reservation held by owner.

    - reservations: sequence of IPReservation.  Not modified.

    - owner: the identity to look for, as understood by match_fn.

    - match_fn: callable (reservations, owner) returning the index of the
      matching reservation, or NOT_FOUND.

    Returns (new_reservations, removed_reservation), where new_reservations
    is a new list holding every other reservation in its original order.

    Raises ReservationNotFound if nothing matches.
    """
    idx = match_fn(reservations, owner)
    if idx == NOT_FOUND:
        raise ReservationNotFound(owner)
    removed = reservations[idx]
    LOG.debug("Deallocating %s", removed)
    return list(reservations[:idx]) + list(reservations[idx + 1:]), removed


def deallocate_ip(reservations, container_id):
    """Release the address held by a container that is being torn down.

    Returns (new_reservations, released_ip).
    """
    updated, removed = iterate_for_deallocation(reservations, container_id,
                                                match_by_container_id)
    return updated, removed.ip


def release_container_ip(pool, container_id):
    """Release a container's address from a pool and commit the result.

    Raises ReservationNotFound if the container holds no address in the
    pool, and whatever pool.update() raises if the write fails.
    """
    updated, ip = deallocate_ip(pool.allocations(), container_id)
    pool.update(updated)
    LOG.info("Released %s from pool %s for container %s",
             ip, pool.name, container_id)
    return ip
