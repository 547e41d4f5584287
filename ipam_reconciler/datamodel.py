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

from collections import namedtuple
import json

import netaddr

from ipam_reconciler.exceptions import DatastoreError


# Particular JSON key strings.
POOL_RANGE = 'range'
POOL_ALLOCATIONS = 'allocations'
ALLOCATION_ID = 'id'
ALLOCATION_PODREF = 'podref'


class IPReservation(namedtuple("IPReservation",
                               ["ip", "pod_ref", "container_id"])):
    """A single claimed address and the workload that holds it.

    - ip: netaddr.IPAddress

    - pod_ref: "<namespace>/<name>" of the owning pod; empty when the owner
      was never recorded.

    - container_id: ID of the container that claimed the address; may be
      empty.
    """
    __slots__ = ()

    def __new__(cls, ip, pod_ref="", container_id=""):
        return super(IPReservation, cls).__new__(
            cls, netaddr.IPAddress(ip), pod_ref or "", container_id or "")

    def __str__(self):
        return "IP: %s is reserved for pod: %s" % (self.ip, self.pod_ref)

    def to_dict(self):
        return {'ip': str(self.ip),
                ALLOCATION_PODREF: self.pod_ref,
                ALLOCATION_ID: self.container_id}


def pod_ref(namespace, name):
    return "%s/%s" % (namespace, name)


def key_for_pool(prefix, name):
    return prefix + name


def pool_name_from_key(prefix, key):
    assert key.startswith(prefix), "%s is not under %s" % (key, prefix)
    return key[len(prefix):]


def parse_pool(value):
    """Decode the JSON value of a pool key.

    value may be str or the raw bytes read from etcd.  Returns the decoded
    dict.  Raises DatastoreError if the value is not a UTF-8 JSON object
    with a valid range.
    """
    try:
        if isinstance(value, bytes):
            value = value.decode('utf-8')
        data = json.loads(value)
    except ValueError as e:
        raise DatastoreError("pool value is not valid JSON: %s" % e)
    if not isinstance(data, dict):
        raise DatastoreError("pool value is not a JSON object")
    _pool_network(data)
    return data


def decode_allocations(data):
    """Return the reservations of a decoded pool, ordered by address.

    Allocation keys are offsets from the first address of the pool's range.
    Each offset may appear only once.
    """
    network = _pool_network(data)
    allocations = data.get(POOL_ALLOCATIONS) or {}
    if not isinstance(allocations, dict):
        raise DatastoreError("pool %s is not a JSON object" % POOL_ALLOCATIONS)
    offsets = {}
    for key, allocation in allocations.items():
        try:
            offset = int(key)
        except ValueError:
            raise DatastoreError("allocation key %r is not an offset" % key)
        if not 0 <= offset < network.size:
            raise DatastoreError("allocation offset %d is outside range %s" %
                                 (offset, network))
        if offset in offsets:
            raise DatastoreError("allocation offset %d appears more than "
                                 "once" % offset)
        if not isinstance(allocation, dict):
            raise DatastoreError("allocation at offset %d is not a JSON "
                                 "object" % offset)
        for field in (ALLOCATION_PODREF, ALLOCATION_ID):
            if not isinstance(allocation.get(field) or "", str):
                raise DatastoreError("allocation %s at offset %d is not a "
                                     "string" % (field, offset))
        offsets[offset] = allocation

    reservations = []
    for offset in sorted(offsets):
        allocation = offsets[offset]
        ip = netaddr.IPAddress(network.first + offset, network.version)
        reservations.append(IPReservation(ip,
                                          allocation.get(ALLOCATION_PODREF),
                                          allocation.get(ALLOCATION_ID)))
    return reservations


def encode_allocations(data, reservations):
    """Return a copy of a decoded pool with its allocations replaced."""
    network = _pool_network(data)
    allocations = {}
    for reservation in reservations:
        if reservation.ip not in network:
            raise DatastoreError("%s is outside range %s" %
                                 (reservation.ip, network))
        offset = int(reservation.ip) - network.first
        allocations[str(offset)] = {
            ALLOCATION_ID: reservation.container_id,
            ALLOCATION_PODREF: reservation.pod_ref,
        }
    encoded = dict(data)
    encoded[POOL_ALLOCATIONS] = allocations
    return encoded


def _pool_network(data):
    try:
        return netaddr.IPNetwork(data[POOL_RANGE])
    except KeyError:
        raise DatastoreError("pool has no %s" % POOL_RANGE)
    except (netaddr.AddrFormatError, TypeError, ValueError) as e:
        raise DatastoreError("pool range %r is invalid: %s" %
                             (data[POOL_RANGE], e))
