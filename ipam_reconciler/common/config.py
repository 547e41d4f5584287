#    Licensed under the Apache License, Version 2.0 (the "License"); you may
#    not use this file except in compliance with the License. You may obtain
#    a copy of the License at
#
#         http://www.apache.org/licenses/LICENSE-2.0
#
#    Unless required by applicable law or agreed to in writing, software
#    distributed under the License is distributed on an "AS IS" BASIS, WITHOUT
#    WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied. See the
#    License for the specific language governing permissions and limitations
#    under the License.

from oslo_config import cfg


COMMIT_FAILURE_CONTINUE = 'continue'
COMMIT_FAILURE_ABORT = 'abort'

DEFAULT_POOL_PREFIX = '/ipam/v1/ippools/'
DEFAULT_API_ROOT = 'https://kubernetes.default:443'
SERVICE_ACCOUNT_DIR = '/var/run/secrets/kubernetes.io/serviceaccount'


IPAM_OPTS = [
    # etcd connection information.
    cfg.StrOpt('etcd_host', default='127.0.0.1',
               help="The hostname or IP of the etcd node/proxy"),
    cfg.IntOpt('etcd_port', default=2379,
               help="The port to use for the etcd node/proxy"),
    # etcd TLS-related options.
    cfg.StrOpt('etcd_key_file',
               help="The path to the TLS key file to use with etcd."),
    cfg.StrOpt('etcd_cert_file',
               help="The path to the TLS client certificate file to use with "
                    "etcd."),
    cfg.StrOpt('etcd_ca_cert_file',
               help="The path to the TLS CA certificate file to use with "
                    "etcd."),
    cfg.StrOpt('etcd_username',
               help="User name for accessing an etcd cluster with "
                    "authentication enabled."),
    cfg.StrOpt('etcd_password', secret=True,
               help="Password for accessing an etcd cluster with "
                    "authentication enabled."),
    # Listing every pool in one read can take a while on a big cluster.
    cfg.IntOpt('etcd_timeout', default=60,
               help="Timeout (in seconds) for etcd requests."),
    cfg.StrOpt('pool_prefix', default=DEFAULT_POOL_PREFIX,
               help="etcd key prefix under which IP pools are stored."),
    # Reconcile loop behaviour.
    cfg.IntOpt('reconcile_interval', default=0, min=0,
               help="Seconds between reconcile passes.  0 runs a single "
                    "pass and exits."),
    cfg.IntOpt('reconcile_timeout', default=0, min=0,
               help="If non-zero, cancel a pass that has not finished "
                    "after this many seconds."),
    cfg.IntOpt('conflict_retries', default=3, min=0,
               help="How many times to re-run a pass that hit a concurrent "
                    "modification of a pool."),
    cfg.StrOpt('commit_failure_policy', default=COMMIT_FAILURE_CONTINUE,
               choices=[COMMIT_FAILURE_CONTINUE, COMMIT_FAILURE_ABORT],
               help="What to do when a pool cannot be reclaimed for a "
                    "reason other than a conflict: 'continue' with the "
                    "remaining pools, or 'abort' the pass."),
]

KUBERNETES_OPTS = [
    cfg.StrOpt('api_root', default=DEFAULT_API_ROOT,
               help="Scheme, host and port of the Kubernetes API."),
    cfg.StrOpt('auth_token', secret=True,
               help="Bearer token for the Kubernetes API.  Read from "
                    "token_file when not set."),
    cfg.StrOpt('token_file', default=SERVICE_ACCOUNT_DIR + '/token',
               help="File holding the service account token."),
    cfg.StrOpt('ca_cert_file', default=SERVICE_ACCOUNT_DIR + '/ca.crt',
               help="CA certificate used to verify the Kubernetes API."),
    cfg.IntOpt('page_size', default=500, min=1,
               help="Maximum number of pods fetched per list request."),
    cfg.IntOpt('request_timeout', default=10, min=1,
               help="Timeout (in seconds) for Kubernetes API requests."),
]


def register_options(conf, additional_options=None):
    options_to_register = (
        IPAM_OPTS if additional_options is None
        else IPAM_OPTS + additional_options)
    conf.register_opts(options_to_register, 'ipam')
    conf.register_opts(KUBERNETES_OPTS, 'kubernetes')


def list_opts():
    return [('ipam', IPAM_OPTS), ('kubernetes', KUBERNETES_OPTS)]
