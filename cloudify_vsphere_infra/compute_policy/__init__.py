# Copyright (c) 2014-2020 Cloudify Platform Ltd. All rights reserved
#
# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
# You may obtain a copy of the License at
#
#       http://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.

import requests

# Cloudify imports
from cloudify import ctx
from cloudify.exceptions import NonRecoverableError

from base64 import b64encode

from vsphere_infra_common.clients import Config
from vsphere_infra_common.constants import (
    COMPUTE_POLICY_TYPES,
    COMPUTE_POLICY_CAPABILITY_PREFIX,
)


def capability_for(policy_type):
    if policy_type not in COMPUTE_POLICY_TYPES:
        raise NonRecoverableError(
            'Unsupported policy_type {policy_type}, expected one of: '
            '{types}'.format(policy_type=policy_type,
                             types=', '.join(COMPUTE_POLICY_TYPES)))
    return COMPUTE_POLICY_CAPABILITY_PREFIX + policy_type


def policy_type_of(capability):
    """com.vmware...capabilities.vm_host_affinity -> vm_host_affinity"""
    return (capability or '').rsplit('.', 1)[-1]


class ComputePolicies(object):

    def __init__(self, connection_config):
        # we need set it empty for correct delete
        self.session_id = None
        # node values override the static configuration file
        self.config = {}
        self.config.update(Config().get())
        self.config.update(connection_config or {})
        for key in ('username', 'password'):
            if not self.config.get(key):
                raise NonRecoverableError(
                    '{key} must be provided in connection_config or in '
                    'the static configuration file'.format(key=key))
        self.host = self.config.get('host') or \
            self.config.get('vsphere_server')
        if not self.host:
            raise NonRecoverableError(
                'one of host or vsphere_server must be provided')
        if self.config.get('port'):
            self.host = '{host}:{port}'.format(host=self.host,
                                               port=self.config['port'])
        # use header based authentication
        credentials = b64encode(
            '{0}:{1}'.format(
                self.config['username'],
                self.config['password']).encode('utf-8')).decode('ascii')
        self._call(
            "POST",
            self._url("com/vmware/cis/session"),
            headers={'vmware-use-header-authn': 'true',
                     'Authorization': 'Basic {0}'.format(credentials)})

    @property
    def _verify(self):
        return self.config.get('certificate_path') or \
            not self.config.get('allow_insecure', False)

    def _url(self, path):
        return "https://{host}/rest/{path}".format(host=self.host, path=path)

    def _headers(self):
        return {'vmware-api-session-id': self.session_id}

    def _call(self, *argc, **kwargs):
        kwargs.setdefault('verify', self._verify)
        response = requests.request(*argc, **kwargs)
        response.raise_for_status()
        if argc[0].lower() == 'delete':
            return None
        value = response.json()
        ctx.logger.debug("Response is {value}".format(value=value))
        if "value" not in value:
            raise NonRecoverableError("No results provided.")
        if argc[0].lower() == 'post' and 'com/vmware/cis/session' in argc[1]:
            self.session_id = value["value"]
        return value["value"]

    def __del__(self):
        if self.session_id:
            try:
                self._call(
                    "DELETE",
                    self._url("com/vmware/cis/session"),
                    headers=self._headers())
            except Exception as ex:
                ctx.logger.debug(
                    "Exception raised on log out: {ex}".format(
                        ex=repr(ex)))
        self.session_id = None

    def create(self, name, description, policy_type, vm_tag, host_tag=None):
        capability = capability_for(policy_type)
        spec = {
            "@class": "{capability}.create_spec".format(
                capability=capability),
            "capability": capability,
            "name": name,
            "description": description or '',
            "vm_tag": vm_tag,
        }
        if host_tag:
            spec["host_tag"] = host_tag
        ctx.logger.debug("Creating compute policy with {spec}".format(
            spec=repr(spec)))
        return self._call(
            "POST",
            self._url("vcenter/compute/policies"),
            json={"spec": spec},
            headers=self._headers())

    def get(self, policy_id):
        """Policy details, or None when the policy does not exist."""
        try:
            return self._call(
                "GET",
                self._url("vcenter/compute/policies/{policy_id}".format(
                    policy_id=policy_id)),
                headers=self._headers())
        except requests.exceptions.HTTPError as err:
            if err.response is not None and \
                    err.response.status_code == 404:
                return None
            raise

    def list(self):
        return self._call(
            "GET",
            self._url("vcenter/compute/policies"),
            headers=self._headers())

    def delete(self, policy_id):
        self._call(
            "DELETE",
            self._url("vcenter/compute/policies/{policy_id}".format(
                policy_id=policy_id)),
            headers=self._headers())

    def find_by_name(self, name):
        for policy in self.list():
            if policy.get('name') == name:
                return policy
        return None
