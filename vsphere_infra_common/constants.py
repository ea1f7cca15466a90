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

import os


VSPHERE_RESOURCE_EXTERNAL = 'use_external_resource'

HOST_ID = 'vsphere_host_id'
HOST_CLUSTER = 'cluster'
HOST_CONNECTED = 'connected'
HOST_LICENSE = 'license'
HOST_CONFIG = 'host_config'
# Changing any of these needs the host to be reconnected
HOST_CONNECTION_KEYS = ['hostname', 'username', 'password_digest',
                        'thumbprint']

# Outcomes of the host connection decision
HOST_RECONNECT = 'reconnect'
HOST_DISCONNECT = 'disconnect'
HOST_NOOP = 'noop'

VNIC_ID = 'vsphere_vnic_id'
VNIC_PORTGROUP = 'portgroup'
VNIC_DVS_PORT = 'distributed_switch_port'
VNIC_DV_PORTGROUP = 'distributed_port_group'
VNIC_MAC = 'mac'
VNIC_MTU = 'mtu'
VNIC_IPV4 = 'ipv4'
VNIC_IPV6 = 'ipv6'

DATASTORE_FILE_ID = 'vsphere_datastore_file_id'
DATASTORE_FILE_DATASTORE_ID = 'datastore_id'
DATASTORE_FILE_DATACENTER_ID = 'datacenter_id'
DATASTORE_FILE_SOURCE_CONFIG = 'source_config'
# Deprecated attribute -> replacement
DATASTORE_FILE_DEPRECATED = {
    'datacenter': 'datastore_id',
    'datastore': 'datastore_id',
    'source_datacenter': 'source_datastore_id',
    'source_datastore': 'source_datastore_id',
}
DATASTORE_FILE_SOURCE_KEYS = ['source_datacenter', 'source_datastore',
                              'source_datastore_id', 'source_file']

COMPUTE_POLICY_ID = 'vsphere_compute_policy_id'
COMPUTE_POLICY_CAPABILITY_PREFIX = \
    'com.vmware.vcenter.compute.policies.capabilities.'
COMPUTE_POLICY_TYPES = [
    'vm_host_affinity',
    'vm_host_anti_affinity',
    'vm_vm_affinity',
    'vm_vm_anti_affinity',
]

TASK_CHECK_SLEEP = 15
DEFAULT_MAX_WAIT_TIME = 300

MANAGER_PLUGIN_FILES = os.path.join('/etc', 'cloudify', 'vsphere_plugin')
DEFAULT_CONFIG_PATH = os.path.join(
    MANAGER_PLUGIN_FILES,
    'connection_config.yaml')
DEFAULT_SESSION_PATH = os.path.join('~', '.cloudify-vsphere', 'sessions')

# Cloudify delete node action
DELETE_NODE_ACTION = "cloudify.interfaces.lifecycle.delete"

# task id for recheck
ASYNC_TASK_ID = '_task_id'
# field name for save resulted resource id
ASYNC_RESOURCE_ID = '_resource_id'

EXPECTED_CONFIGURATION = 'expected_configuration'
