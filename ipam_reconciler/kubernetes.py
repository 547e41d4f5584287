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

import os

from oslo_log import log
import requests

from ipam_reconciler import datamodel
from ipam_reconciler.exceptions import InventoryUnavailable
from ipam_reconciler.storage import WorkloadInventory

LOG = log.getLogger(__name__)

PODS_PATH = "%s/api/v1/pods"


class KubernetesInventory(WorkloadInventory):
    def __init__(self, api_root, auth_token=None, ca_cert_file=None,
                 page_size=500, timeout=10):
        self.api_root = api_root.rstrip("/")
        """
        Scheme, IP and port of the Kubernetes API.
        """

        self.auth_token = auth_token
        """
        Bearer token to use when accessing the API, if any.
        """

        self.ca_cert_file = ca_cert_file
        """
        CA certificate to verify the API with.  Verification is disabled
        when no certificate is available.
        """

        self.page_size = page_size
        self.timeout = timeout

    @classmethod
    def from_config(cls, k8s_cfg):
        auth_token = k8s_cfg.auth_token or read_token_file(k8s_cfg.token_file)
        ca_cert_file = k8s_cfg.ca_cert_file
        if ca_cert_file and not os.path.exists(ca_cert_file):
            LOG.warning("CA certificate %s not found; not verifying the "
                        "Kubernetes API", ca_cert_file)
            ca_cert_file = None
        return cls(k8s_cfg.api_root,
                   auth_token=auth_token,
                   ca_cert_file=ca_cert_file,
                   page_size=k8s_cfg.page_size,
                   timeout=k8s_cfg.request_timeout)

    def list_live_workloads(self):
        pod_refs = set()
        for pod in self.list_pods():
            try:
                metadata = pod["metadata"]
                pod_refs.add(datamodel.pod_ref(metadata.get("namespace", ""),
                                               metadata["name"]))
            except (KeyError, TypeError, AttributeError):
                # A pod we cannot name might still own an address.
                raise InventoryUnavailable("pod without a name: %r" % pod)
        LOG.info("Found %d live pod(s)", len(pod_refs))
        return pod_refs

    def list_pods(self):
        """
        Lists every pod in every namespace, following the API's paging.

        Raises InventoryUnavailable if any page cannot be read, so that the
        caller never sees a truncated list.
        """
        url = PODS_PATH % self.api_root
        session = self._session()
        pods = []
        continue_token = None
        while True:
            params = {"limit": self.page_size}
            if continue_token:
                params["continue"] = continue_token
            LOG.debug("Listing pods from %s with %s", url, params)
            try:
                response = session.get(url,
                                       params=params,
                                       verify=self.ca_cert_file or False,
                                       timeout=self.timeout)
            except requests.RequestException as e:
                raise InventoryUnavailable("failed to list pods: %s" % e)

            if response.status_code != 200:
                # 410 Gone means the continue token expired mid-listing.
                LOG.error("Error querying API: %s %s",
                          response.status_code, response.text)
                raise InventoryUnavailable("failed to list pods: HTTP %s" %
                                           response.status_code)
            try:
                body = response.json()
                pods.extend(body.get("items") or [])
                continue_token = (body.get("metadata") or {}).get("continue")
            except (ValueError, AttributeError) as e:
                raise InventoryUnavailable("bad pod list from API: %s" % e)

            if not continue_token:
                break
        return pods

    def _session(self):
        session = requests.Session()
        if self.auth_token:
            session.headers.update(
                {'Authorization': 'Bearer ' + self.auth_token})
        return session


def read_token_file(file_path):
    """
    Gets the API access token from the serviceaccount file.
    """
    LOG.debug("Getting ServiceAccount token from: %s", file_path)
    if not file_path or not os.path.exists(file_path):
        LOG.warning("No ServiceAccount token found on disk")
        return None

    with open(file_path, "r") as f:
        return f.read().replace('\n', '')
