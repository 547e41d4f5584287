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

import functools

from etcd3gw.client import Etcd3Client
from etcd3gw.exceptions import Etcd3Exception
from etcd3gw.utils import _encode
from etcd3gw.utils import _increment_last_byte
from oslo_config import cfg
from oslo_log import log

LOG = log.getLogger(__name__)

# Limit on number of keys we get from etcd.  The etcd gateway has limits on
# the size of responses that kick in at 3000+ keys.
CHUNK_SIZE_LIMIT = 200


class KeyNotFound(Etcd3Exception):
    pass


def get(key):
    """Read a value from etcdv3.

    - key (string): The key to read.

    Returns (value, mod_revision) where

    - value is the key's raw value (bytes)

    - mod_revision is the etcdv3 revision at which the key was last
      modified

    Raises KeyNotFound if there is no such key.
    """
    client = _get_client()
    results = client.get(key, metadata=True)
    LOG.debug("etcdv3 get key=%s results=%s", key, results)
    if len(results) != 1:
        raise KeyNotFound()
    value, item = results[0]
    return value, item['mod_revision']


def put(key, value, mod_revision=None):
    """Write a key/value pair to etcdv3.

    - key (string): The key to write.

    - value (string): The value to write.

    - mod_revision (string): If specified, indicates that the write should only
      proceed if replacing an existing value with that mod_revision.
      mod_revision=0 indicates that the key must not yet exist, i.e. that this
      write will create it.

    Returns True if the write happened successfully; False if not.
    """
    client = _get_client()
    LOG.debug("etcdv3 put key=%s value=%s mod_revision=%r",
              key, value, mod_revision)
    if mod_revision is None:
        return client.put(key, value)

    base64_key = _encode(key)
    if mod_revision == 0:
        # Write operation must _create_ the KV entry.
        compare = {
            'key': base64_key,
            'result': 'EQUAL',
            'target': 'VERSION',
            'version': 0,
        }
    else:
        # Write operation must _replace_ a KV entry with the specified
        # revision.
        compare = {
            'key': base64_key,
            'result': 'EQUAL',
            'target': 'MOD',
            'mod_revision': mod_revision,
        }
    txn = {
        'compare': [compare],
        'success': [{
            'request_put': {
                'key': base64_key,
                'value': _encode(value),
            },
        }],
        'failure': [],
    }
    result = client.transaction(txn)
    LOG.debug("transaction result %s", result)
    return result.get('succeeded', False)


def get_prefix(prefix, revision=None):
    """Read all etcdv3 data whose key begins with a given prefix.

    - prefix (string): The prefix.

    - revision: The revision to do the get at.  If not specified then the
      current revision is used.

    Returns a list of tuples (key, value, mod_revision), one for each key-value
    pair, in which:

    - key is the etcd key (a string)

    - value is the raw etcd value (bytes; note *not* JSON-decoded)

    - mod_revision is the revision at which that key was last modified (an
      integer represented as a string).

    All chunks are read at the same revision, so the result is a consistent
    snapshot of the prefix.
    """
    client = _get_client()

    if revision is None:
        _, revision = get_status()
        LOG.debug("Doing get at current revision: %r", revision)

    # The JSON gateway can only return a certain number of bytes in a single
    # response so we chunk up the read into blocks.
    #
    # Since etcd's get protocol has an inclusive range_start and an exclusive
    # range_end, we load the keys in reverse order.  That way, we can use the
    # final key in each chunk as the next range_end.
    range_end = _encode(_increment_last_byte(prefix))
    results = []
    while True:
        chunk = client.get(prefix,
                           metadata=True,
                           range_end=range_end,
                           sort_order='descend',
                           limit=CHUNK_SIZE_LIMIT,
                           revision=str(revision))
        results.extend(chunk)
        if len(chunk) < CHUNK_SIZE_LIMIT:
            # Partial (or empty) chunk signals that we're done.
            break
        _, data = chunk[-1]
        range_end = _encode(data["key"])

    LOG.debug("etcdv3 get_prefix %s results=%s", prefix, len(results))
    tuples = []
    for value, item in reversed(results):
        tuples.append((item['key'].decode(), value,
                       item['mod_revision']))
    return tuples


def get_status():
    """Get the current etcdv3 cluster ID and revision.

    Returns a tuple (cluster_id, revision).
    """
    client = _get_client()
    status = client.status()
    LOG.debug("etcdv3 status %s", status)
    return status['header']['cluster_id'], status['header']['revision']


def logging_exceptions(fn):
    """Decorator to log (and reraise) Etcd3Exceptions."""
    @functools.wraps(fn)
    def wrapped(self, *args, **kwargs):
        try:
            return fn(self, *args, **kwargs)
        except Etcd3Exception as e:
            LOG.warning("Etcd3Exception, re-raising: %r:\n%s",
                        e, e.detail_text)
            raise
    return wrapped


# Internals.
_client = None


# Wrap Etcd3Client to authenticate when needed and add an
# Authorization header to the session headers.
class Etcd3AuthClient(Etcd3Client):
    def __init__(self, host='localhost', port=2379, protocol="http",
                 ca_cert=None, cert_key=None, cert_cert=None, timeout=None,
                 username=None, password=None):
        super(Etcd3AuthClient, self).__init__(host=host,
                                              port=port,
                                              protocol=protocol,
                                              ca_cert=ca_cert,
                                              cert_key=cert_key,
                                              cert_cert=cert_cert,
                                              timeout=timeout)
        self.username = username
        self.password = password

    def authenticate(self):
        # When authenticating, there mustn't be an Authorization
        # header with an old token, or else etcd responds with
        # "Unauthorized: invalid auth token".
        if 'Authorization' in self.session.headers:
            del self.session.headers['Authorization']

        response = super(Etcd3AuthClient, self).post(
            self.get_url('/auth/authenticate'),
            json={"name": self.username, "password": self.password}
        )
        self.session.headers['Authorization'] = response['token']

    def post(self, *args, **kwargs):
        try:
            # Try the post.  If no authentication is needed, or if an
            # Authorization token has been added to the session's
            # headers, and is still valid, this should succeed.
            return super(Etcd3AuthClient, self).post(*args, **kwargs)
        except Etcd3Exception as e:
            if self.username and self.password:
                # Etcd auth credentials are configured, so assume the
                # problem might be that we need to authenticate or
                # re-authenticate.
                LOG.info("Might need to (re)authenticate: %r:\n%s",
                         e, e.detail_text)
                self.authenticate()
                return super(Etcd3AuthClient, self).post(*args, **kwargs)

            # Otherwise re-raise.
            raise


def _get_client():
    global _client
    if not _client:
        ipam_cfg = cfg.CONF.ipam
        tls_config_params = [
            ipam_cfg.etcd_key_file,
            ipam_cfg.etcd_cert_file,
            ipam_cfg.etcd_ca_cert_file,
        ]
        if any(tls_config_params):
            LOG.info("TLS to etcd is enabled with key file %s; "
                     "cert file %s; CA cert file %s", *tls_config_params)
            _client = Etcd3AuthClient(host=ipam_cfg.etcd_host,
                                      port=ipam_cfg.etcd_port,
                                      timeout=ipam_cfg.etcd_timeout,
                                      protocol="https",
                                      ca_cert=ipam_cfg.etcd_ca_cert_file,
                                      cert_key=ipam_cfg.etcd_key_file,
                                      cert_cert=ipam_cfg.etcd_cert_file,
                                      username=ipam_cfg.etcd_username,
                                      password=ipam_cfg.etcd_password)
        else:
            LOG.info("TLS disabled, using HTTP to connect to etcd.")
            _client = Etcd3AuthClient(host=ipam_cfg.etcd_host,
                                      port=ipam_cfg.etcd_port,
                                      timeout=ipam_cfg.etcd_timeout,
                                      protocol="http",
                                      username=ipam_cfg.etcd_username,
                                      password=ipam_cfg.etcd_password)
    return _client
