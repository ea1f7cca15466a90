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

# Stdlib imports

# Third party imports
from pyVmomi import vim

# Cloudify imports
from cloudify.exceptions import NonRecoverableError

# This package imports
from . import VsphereClient
from ..constants import (
    HOST_NOOP,
    HOST_RECONNECT,
    HOST_DISCONNECT,
)

CONNECTED = vim.HostSystem.ConnectionState.connected
DISCONNECTED = vim.HostSystem.ConnectionState.disconnected


def connection_action(connection_changed, desired_connected, actual_state):
    """Decide what to do about a host's connection.

    Returns one of HOST_RECONNECT, HOST_DISCONNECT or HOST_NOOP.
    """
    if connection_changed and desired_connected:
        return HOST_RECONNECT
    if desired_connected and actual_state != CONNECTED:
        return HOST_RECONNECT
    if desired_connected and actual_state != DISCONNECTED \
            and not connection_changed:
        return HOST_NOOP
    if not desired_connected and actual_state == DISCONNECTED:
        return HOST_NOOP
    if not desired_connected and actual_state != DISCONNECTED:
        return HOST_DISCONNECT
    raise NonRecoverableError('Unexpected combination of connection states')


class HostClient(VsphereClient):

    def get_host(self, host_id):
        return self._get_obj_by_id(vim.HostSystem, host_id, use_cache=False)

    def get_cluster(self, cluster_id):
        cluster = self._get_obj_by_id(vim.ClusterComputeResource, cluster_id,
                                      use_cache=False)
        if not cluster:
            raise NonRecoverableError(
                'Could not find cluster with ID {cluster_id}.'.format(
                    cluster_id=cluster_id))
        return cluster

    def _require_host(self, host_id):
        host = self.get_host(host_id)
        if not host:
            raise NonRecoverableError(
                'Could not find host with ID {host_id}.'.format(
                    host_id=host_id))
        return host

    def connect_spec(self, hostname, username, password, thumbprint=None,
                     force=False):
        spec = vim.host.ConnectSpec()
        spec.hostName = hostname
        spec.userName = username
        spec.password = password
        if thumbprint:
            spec.sslThumbprint = thumbprint
        spec.force = bool(force)
        return spec

    def list_license_keys(self):
        return [lic.licenseKey
                for lic in self.si.content.licenseManager.licenses]

    def assigned_license_keys(self, host_id):
        assignment_manager = \
            self.si.content.licenseManager.licenseAssignmentManager
        return [
            assigned.assignedLicense.licenseKey
            for assigned in assignment_manager.QueryAssignedLicenses(
                entityId=host_id)
        ]

    def assign_license(self, host_id, license_key):
        self._logger.debug(
            'Assigning license to host {host_id}.'.format(host_id=host_id))
        assignment_manager = \
            self.si.content.licenseManager.licenseAssignmentManager
        assignment_manager.UpdateAssignedLicense(entity=host_id,
                                                 licenseKey=license_key)

    def add_host(self, cluster_id, spec, connected=True, license_key=None,
                 instance=None, max_wait_time=None, resource_id=None):
        self.validate_virtual_center()
        cluster = self.get_cluster(cluster_id)

        if license_key and license_key not in self.list_license_keys():
            raise NonRecoverableError(
                'license key supplied ({key}) did not match against known '
                'license keys'.format(key=license_key))

        self._logger.debug(
            'Adding host {hostname} to cluster {cluster}.'.format(
                hostname=spec.hostName, cluster=cluster.name))
        task = cluster.obj.AddHost_Task(spec=spec,
                                        asConnected=bool(connected),
                                        license=license_key or None)
        host = self._wait_for_task(task, instance=instance,
                                   max_wait_time=max_wait_time,
                                   resource_id=resource_id)
        return host._moId

    def connection_state(self, host_id):
        host = self._require_host(host_id)
        return host.summary.runtime.connectionState

    def reconnect_host(self, host_id, spec, instance=None,
                       max_wait_time=None):
        host = self._require_host(host_id)
        self._logger.debug(
            'Reconnecting host {host_id}.'.format(host_id=host_id))
        task = host.obj.ReconnectHost_Task(cnxSpec=spec)
        try:
            self._wait_for_task(task, instance=instance,
                                max_wait_time=max_wait_time)
        except NonRecoverableError as err:
            raise NonRecoverableError(
                'Error while reconnecting host ({host_id}): {err}'.format(
                    host_id=host_id, err=str(err)))

    def disconnect_host(self, host_id, instance=None, max_wait_time=None):
        host = self._require_host(host_id)
        self._logger.debug(
            'Disconnecting host {host_id}.'.format(host_id=host_id))
        task = host.obj.DisconnectHost_Task()
        try:
            self._wait_for_task(task, instance=instance,
                                max_wait_time=max_wait_time)
        except NonRecoverableError as err:
            raise NonRecoverableError(
                'Error while disconnecting host ({host_id}): {err}'.format(
                    host_id=host_id, err=str(err)))

    def enter_maintenance_mode(self, host_id, evacuate=False,
                               max_wait_time=None):
        host = self._require_host(host_id)
        if host.summary.runtime.inMaintenanceMode:
            self._logger.debug(
                'Host {host_id} is already in maintenance mode.'.format(
                    host_id=host_id))
            return
        task = host.obj.EnterMaintenanceMode_Task(
            timeout=max_wait_time or 0,
            evacuatePoweredOffVms=evacuate)
        try:
            self._wait_for_task(task, max_wait_time=max_wait_time)
        except NonRecoverableError as err:
            raise NonRecoverableError(
                'error while putting host to maintenance mode: {err}'.format(
                    err=str(err)))

    def exit_maintenance_mode(self, host_id, max_wait_time=None):
        host = self._require_host(host_id)
        if not host.summary.runtime.inMaintenanceMode:
            return
        task = host.obj.ExitMaintenanceMode_Task(timeout=max_wait_time or 0)
        try:
            self._wait_for_task(task, max_wait_time=max_wait_time)
        except NonRecoverableError as err:
            raise NonRecoverableError(
                'error while taking host out of maintenance mode: '
                '{err}'.format(err=str(err)))

    def move_host(self, host_id, cluster_id, max_wait_time=None):
        cluster = self.get_cluster(cluster_id)
        host = self._require_host(host_id)

        self.enter_maintenance_mode(host_id, evacuate=False,
                                    max_wait_time=max_wait_time)
        task = cluster.obj.MoveInto_Task(host=[host.obj])
        move_error = None
        try:
            self._wait_for_task(task, max_wait_time=max_wait_time)
        except NonRecoverableError as err:
            move_error = err
        self.exit_maintenance_mode(host_id, max_wait_time=max_wait_time)

        if move_error:
            raise NonRecoverableError(
                'Error while moving host to new cluster ({cluster_id}): '
                '{err}'.format(cluster_id=cluster_id, err=str(move_error)))

    def remove_host(self, host_id, instance=None, max_wait_time=None):
        self.enter_maintenance_mode(host_id, evacuate=True,
                                    max_wait_time=max_wait_time)
        host = self._require_host(host_id)
        task = host.obj.Destroy_Task()
        try:
            self._wait_for_task(task, instance=instance,
                                max_wait_time=max_wait_time)
        except NonRecoverableError as err:
            raise NonRecoverableError(
                'Error while removing host ({host_id}): {err}'.format(
                    host_id=host_id, err=str(err)))
