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

import unittest

import requests
from mock import Mock, patch

from cloudify.state import current_ctx
from cloudify.mocks import MockCloudifyContext
from cloudify.exceptions import NonRecoverableError

from vsphere_infra_common.constants import (
    COMPUTE_POLICY_ID,
    DELETE_NODE_ACTION,
    COMPUTE_POLICY_CAPABILITY_PREFIX,
)
import cloudify_vsphere_infra.compute_policy as compute_policy
from cloudify_vsphere_infra.compute_policy import policy

SESSION_URL = 'https://vcenter.local:443/rest/com/vmware/cis/session'
POLICIES_URL = 'https://vcenter.local:443/rest/vcenter/compute/policies'


class ComputePoliciesTest(unittest.TestCase):

    def setUp(self):
        super(ComputePoliciesTest, self).setUp()
        self.mock_ctx = Mock()
        current_ctx.set(self.mock_ctx)
        self.config = {'host': 'vcenter.local',
                       'port': 443,
                       'username': 'administrator',
                       'password': 'secret',
                       'allow_insecure': True}
        self.calls = []
        config_patcher = patch(
            'cloudify_vsphere_infra.compute_policy.Config.get',
            Mock(side_effect=dict))
        self.mock_config_get = config_patcher.start()
        self.addCleanup(config_patcher.stop)

    def tearDown(self):
        current_ctx.clear()
        super(ComputePoliciesTest, self).tearDown()

    def _response(self, value=None, status_code=200):
        response = Mock()
        response.status_code = status_code
        response.json = Mock(return_value={"value": value})
        if status_code >= 400:
            response.raise_for_status = Mock(
                side_effect=requests.exceptions.HTTPError(
                    response=Mock(status_code=status_code)))
        return response

    def _requests(self, responses):
        """Fake requests module answering by (method, url)."""
        responses.setdefault(('POST', SESSION_URL),
                             self._response('session_id'))
        responses.setdefault(('DELETE', SESSION_URL), self._response())

        def _fake_response(method, url, **kwargs):
            self.calls.append((method, url, kwargs))
            return responses[(method, url)]

        fake_requests = Mock()
        fake_requests.request = _fake_response
        fake_requests.exceptions.HTTPError = requests.exceptions.HTTPError
        return fake_requests

    def _logout(self, policies):
        policies.__del__()
        method, url, kwargs = self.calls[-1]
        self.assertEqual((method, url), ('DELETE', SESSION_URL))
        self.assertEqual(kwargs['headers'],
                         {'vmware-api-session-id': 'session_id'})

    def test_capability(self):
        self.assertEqual(compute_policy.capability_for('vm_host_affinity'),
                         COMPUTE_POLICY_CAPABILITY_PREFIX + 'vm_host_affinity')
        with self.assertRaisesRegex(NonRecoverableError,
                                    'Unsupported policy_type'):
            compute_policy.capability_for('host_affinity')
        self.assertEqual(
            compute_policy.policy_type_of(
                COMPUTE_POLICY_CAPABILITY_PREFIX + 'vm_vm_anti_affinity'),
            'vm_vm_anti_affinity')
        self.assertEqual(compute_policy.policy_type_of(None), '')

    def test_login(self):
        with patch('cloudify_vsphere_infra.compute_policy.requests',
                   self._requests({})):
            policies = compute_policy.ComputePolicies(self.config)
            self.assertEqual(policies.session_id, 'session_id')
            method, url, kwargs = self.calls[0]
            self.assertEqual((method, url), ('POST', SESSION_URL))
            self.assertEqual(
                kwargs['headers']['Authorization'],
                'Basic YWRtaW5pc3RyYXRvcjpzZWNyZXQ=')
            self.assertFalse(kwargs['verify'])
            self._logout(policies)
            self.assertIsNone(policies.session_id)

    def test_login_vsphere_server_and_no_host(self):
        del self.config['host']
        del self.config['port']
        self.config['vsphere_server'] = 'vcenter.local'
        with patch('cloudify_vsphere_infra.compute_policy.requests',
                   self._requests({})):
            policies = compute_policy.ComputePolicies(self.config)
            self.assertEqual(policies._url('vcenter/compute/policies'),
                             'https://vcenter.local/rest/vcenter/compute/'
                             'policies')
            policies.session_id = None

        del self.config['vsphere_server']
        with self.assertRaisesRegex(NonRecoverableError,
                                    'one of host or vsphere_server'):
            compute_policy.ComputePolicies(self.config)

    def test_login_with_static_config(self):
        self.mock_config_get.side_effect = lambda: {
            'host': 'vcenter.local',
            'port': 443,
            'username': 'administrator',
            'password': 'from-file',
            'allow_insecure': True,
        }
        with patch('cloudify_vsphere_infra.compute_policy.requests',
                   self._requests({})):
            # credentials only in the configuration file
            policies = compute_policy.ComputePolicies(None)
            self.assertEqual(
                self.calls[0][2]['headers']['Authorization'],
                'Basic YWRtaW5pc3RyYXRvcjpmcm9tLWZpbGU=')
            self._logout(policies)

            # node values override the file
            policies = compute_policy.ComputePolicies({'password': 'secret'})
            self.assertEqual(
                self.calls[-1][2]['headers']['Authorization'],
                'Basic YWRtaW5pc3RyYXRvcjpzZWNyZXQ=')
            self._logout(policies)

    def test_login_without_credentials(self):
        del self.config['username']
        with self.assertRaisesRegex(NonRecoverableError,
                                    'username must be provided'):
            compute_policy.ComputePolicies(self.config)

    def test_pull_with_static_config(self):
        self.mock_config_get.side_effect = lambda: dict(self.config)
        details = {
            'name': 'pinned',
            'description': '',
            'capability':
                COMPUTE_POLICY_CAPABILITY_PREFIX + 'vm_vm_affinity',
        }
        responses = {
            ('GET', POLICIES_URL + '/policy-1'): self._response(details),
        }
        mock_ctx = MockCloudifyContext(
            'node_name',
            properties={'connection_config': None},
            runtime_properties={COMPUTE_POLICY_ID: 'policy-1'}
        )
        current_ctx.set(mock_ctx)
        with patch('cloudify_vsphere_infra.compute_policy.requests',
                   self._requests(responses)):
            policy.pull()
        self.assertEqual(
            mock_ctx.instance.runtime_properties['policy_type'],
            'vm_vm_affinity')
        self.assertEqual(self.calls[-1][:2], ('DELETE', SESSION_URL))

    def test_no_results(self):
        responses = {('POST', SESSION_URL): Mock(json=Mock(return_value={}))}
        with patch('cloudify_vsphere_infra.compute_policy.requests',
                   self._requests(responses)):
            with self.assertRaisesRegex(NonRecoverableError,
                                        'No results provided'):
                compute_policy.ComputePolicies(self.config)

    def test_create(self):
        responses = {('POST', POLICIES_URL): self._response('policy-1')}
        with patch('cloudify_vsphere_infra.compute_policy.requests',
                   self._requests(responses)):
            policies = compute_policy.ComputePolicies(self.config)
            self.assertEqual(
                policies.create('pinned', None, 'vm_host_affinity',
                                'vm-tag', host_tag='host-tag'),
                'policy-1')
            method, url, kwargs = self.calls[-1]
            capability = \
                COMPUTE_POLICY_CAPABILITY_PREFIX + 'vm_host_affinity'
            self.assertEqual(kwargs['json'], {"spec": {
                "@class": capability + '.create_spec',
                "capability": capability,
                "name": 'pinned',
                "description": '',
                "vm_tag": 'vm-tag',
                "host_tag": 'host-tag',
            }})
            self.assertEqual(kwargs['headers'],
                             {'vmware-api-session-id': 'session_id'})
            self._logout(policies)

    def test_get(self):
        details = {'name': 'pinned', 'capability': 'x.vm_host_affinity'}
        responses = {
            ('GET', POLICIES_URL + '/policy-1'): self._response(details),
            ('GET', POLICIES_URL + '/policy-2'): self._response(
                status_code=404),
            ('GET', POLICIES_URL + '/policy-3'): self._response(
                status_code=500),
        }
        with patch('cloudify_vsphere_infra.compute_policy.requests',
                   self._requests(responses)):
            policies = compute_policy.ComputePolicies(self.config)
            self.assertEqual(policies.get('policy-1'), details)
            self.assertIsNone(policies.get('policy-2'))
            with self.assertRaises(requests.exceptions.HTTPError):
                policies.get('policy-3')
            self._logout(policies)

    def test_list_delete_and_find(self):
        summaries = [{'policy': 'policy-1', 'name': 'first'},
                     {'policy': 'policy-2', 'name': 'second'}]
        responses = {
            ('GET', POLICIES_URL): self._response(summaries),
            ('DELETE', POLICIES_URL + '/policy-1'): self._response(),
        }
        with patch('cloudify_vsphere_infra.compute_policy.requests',
                   self._requests(responses)):
            policies = compute_policy.ComputePolicies(self.config)
            self.assertEqual(policies.find_by_name('second'), summaries[1])
            self.assertIsNone(policies.find_by_name('third'))
            self.assertIsNone(policies.delete('policy-1'))
            self.assertEqual(self.calls[-1][:2],
                             ('DELETE', POLICIES_URL + '/policy-1'))
            self._logout(policies)


@patch('cloudify_vsphere_infra.compute_policy.policy.ComputePolicies')
class ComputePolicyOperationsTest(unittest.TestCase):

    def setUp(self):
        super(ComputePolicyOperationsTest, self).setUp()
        self.mock_ctx = MockCloudifyContext(
            'node_name',
            properties={},
            runtime_properties={}
        )
        self.mock_ctx._operation = Mock()
        current_ctx.set(self.mock_ctx)
        self.properties = {
            'connection_config': {
                'host': 'vcenter.local',
                'port': 443
            },
            'name': 'pinned',
            'description': 'keep VMs on tagged hosts',
            'policy_type': 'vm_host_affinity',
            'vm_tag': 'vm-tag',
            'host_tag': 'host-tag',
            'use_external_resource': False,
        }
        self.details = {
            'name': 'pinned',
            'description': 'keep VMs on tagged hosts',
            'capability':
                COMPUTE_POLICY_CAPABILITY_PREFIX + 'vm_host_affinity',
            'vm_tag': 'vm-tag',
            'host_tag': 'host-tag',
        }

    def tearDown(self):
        current_ctx.clear()
        super(ComputePolicyOperationsTest, self).tearDown()

    def test_create(self, mock_policies):
        policies = mock_policies.return_value
        policies.create.return_value = 'policy-1'
        policies.get.return_value = self.details
        self.mock_ctx.node._properties = self.properties

        policy.create()

        mock_policies.assert_called_once_with(
            self.properties['connection_config'])
        policies.create.assert_called_once_with(
            'pinned', 'keep VMs on tagged hosts', 'vm_host_affinity',
            'vm-tag', host_tag='host-tag')
        runtime_properties = self.mock_ctx.instance.runtime_properties
        self.assertEqual(runtime_properties[COMPUTE_POLICY_ID], 'policy-1')
        self.assertEqual(runtime_properties['name'], 'pinned')
        self.assertEqual(runtime_properties['policy_type'],
                         'vm_host_affinity')
        self.assertEqual(runtime_properties['vm_tag'], 'vm-tag')
        self.assertEqual(runtime_properties['host_tag'], 'host-tag')
        self.assertFalse(runtime_properties['use_external_resource'])

    def test_create_unsupported_type(self, mock_policies):
        self.properties['policy_type'] = 'host_affinity'
        self.mock_ctx.node._properties = self.properties

        with self.assertRaisesRegex(NonRecoverableError,
                                    'Unsupported policy_type'):
            policy.create()
        mock_policies.return_value.create.assert_not_called()

    def test_use_external_resource(self, mock_policies):
        policies = mock_policies.return_value
        self.details['vm_tag'] = 'imported-vm-tag'
        del self.details['host_tag']
        policies.get.return_value = self.details
        self.properties['use_external_resource'] = True
        self.properties['resource_id'] = 'policy-7'
        self.mock_ctx.node._properties = self.properties

        policy.create()

        policies.create.assert_not_called()
        runtime_properties = self.mock_ctx.instance.runtime_properties
        self.assertEqual(runtime_properties[COMPUTE_POLICY_ID], 'policy-7')
        self.assertTrue(runtime_properties['use_external_resource'])
        self.assertEqual(runtime_properties['vm_tag'], 'imported-vm-tag')
        self.assertEqual(runtime_properties['host_tag'], '')

        # delete keeps the external policy
        self.mock_ctx._operation.name = DELETE_NODE_ACTION
        policy.delete()
        policies.delete.assert_not_called()
        self.assertFalse(runtime_properties)

    def test_use_missing_external_resource(self, mock_policies):
        mock_policies.return_value.get.return_value = None
        self.properties['use_external_resource'] = True
        self.properties['resource_id'] = 'policy-7'
        self.mock_ctx.node._properties = self.properties

        with self.assertRaisesRegex(NonRecoverableError,
                                    'no compute policy by that ID'):
            policy.create()

    def test_pull(self, mock_policies):
        policies = mock_policies.return_value
        self.details['description'] = 'changed outside'
        policies.get.return_value = self.details
        self.mock_ctx.node._properties = self.properties
        runtime_properties = self.mock_ctx.instance.runtime_properties
        runtime_properties[COMPUTE_POLICY_ID] = 'policy-1'

        policy.pull()
        self.assertEqual(runtime_properties['description'],
                         'changed outside')

        policies.get.return_value = None
        policy.pull()
        self.assertFalse(runtime_properties)

    def test_delete(self, mock_policies):
        policies = mock_policies.return_value
        policies.get.return_value = self.details
        self.mock_ctx._operation.name = DELETE_NODE_ACTION
        self.mock_ctx.node._properties = self.properties
        self.mock_ctx.instance.runtime_properties[COMPUTE_POLICY_ID] = \
            'policy-1'

        policy.delete()

        policies.delete.assert_called_once_with('policy-1')
        self.assertFalse(self.mock_ctx.instance.runtime_properties)

    def test_delete_already_removed(self, mock_policies):
        policies = mock_policies.return_value
        policies.get.return_value = None
        self.mock_ctx._operation.name = DELETE_NODE_ACTION
        self.mock_ctx.node._properties = self.properties
        self.mock_ctx.instance.runtime_properties[COMPUTE_POLICY_ID] = \
            'policy-1'

        policy.delete()

        policies.delete.assert_not_called()
        self.assertFalse(self.mock_ctx.instance.runtime_properties)

    def test_lookup(self, mock_policies):
        policies = mock_policies.return_value
        policies.find_by_name.return_value = {
            'policy': 'policy-1',
            'name': 'pinned',
            'description': 'summary description',
            'capability':
                COMPUTE_POLICY_CAPABILITY_PREFIX + 'vm_host_affinity',
        }
        policies.get.return_value = self.details
        self.mock_ctx.node._properties = {
            'connection_config': self.properties['connection_config'],
            'name': 'pinned',
        }

        policy.lookup()

        policies.find_by_name.assert_called_once_with('pinned')
        policies.get.assert_called_once_with('policy-1')
        runtime_properties = self.mock_ctx.instance.runtime_properties
        self.assertEqual(runtime_properties[COMPUTE_POLICY_ID], 'policy-1')
        self.assertEqual(runtime_properties['policy_type'],
                         'vm_host_affinity')
        self.assertEqual(runtime_properties['description'],
                         'keep VMs on tagged hosts')
        self.assertEqual(runtime_properties['vm_tag'], 'vm-tag')
        self.assertEqual(runtime_properties['host_tag'], 'host-tag')

    def test_lookup_not_found(self, mock_policies):
        mock_policies.return_value.find_by_name.return_value = None
        self.mock_ctx.node._properties = {
            'connection_config': self.properties['connection_config'],
            'name': 'missing',
        }

        with self.assertRaisesRegex(NonRecoverableError,
                                    'error fetching compute policy: '
                                    'missing'):
            policy.lookup()


if __name__ == '__main__':
    unittest.main()
