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
from pyVmomi import vmodl

# Cloudify imports
from cloudify.exceptions import NonRecoverableError

# This package imports
from vsphere_infra_common import (
    with_host_client,
    remove_runtime_properties,
)
from vsphere_infra_common.clients.host import (
    DISCONNECTED,
    connection_action,
)
from vsphere_infra_common.constants import (
    HOST_ID,
    HOST_CONFIG,
    HOST_CLUSTER,
    HOST_LICENSE,
    HOST_CONNECTED,
    HOST_RECONNECT,
    HOST_DISCONNECT,
    HOST_CONNECTION_KEYS,
    EXPECTED_CONFIGURATION,
)
from vsphere_infra_common.utils import (
    op,
    changed_keys,
    password_digest,
    prepare_for_log,
    check_drift as utils_check_drift,
)


def _desired_connected(connected):
    # unset means the default, connected
    return True if connected is None else bool(connected)


def _host_config(cluster, hostname, username, password, thumbprint,
                 license, force, connected):
    return {
        'cluster': cluster,
        'hostname': hostname,
        'username': username,
        'password_digest': password_digest(password),
        'thumbprint': thumbprint or '',
        'license': license or '',
        'force': bool(force),
        'connected': _desired_connected(connected),
    }


def _read_host(ctx, host_client, license):
    runtime_properties = ctx.instance.runtime_properties
    host_id = runtime_properties.get(HOST_ID)
    if not host_id:
        ctx.logger.debug('No host to read.')
        return

    ctx.logger.debug('{host_id}: Beginning read'.format(host_id=host_id))
    host = host_client.get_host(host_id)
    if not host:
        ctx.logger.info(
            '{host_id}: Host not found, removing from state.'.format(
                host_id=host_id))
        remove_runtime_properties()
        return

    parent = host.parent
    runtime_properties[HOST_CLUSTER] = parent._moId if parent else ''
    runtime_properties[HOST_CONNECTED] = \
        host.summary.runtime.connectionState != DISCONNECTED

    assigned = host_client.assigned_license_keys(host_id)
    runtime_properties[HOST_LICENSE] = \
        license if license and license in assigned else ''
    ctx.logger.debug('{host_id}: Read complete'.format(host_id=host_id))


def _host_state(host_client, host_id):
    host = host_client.get_host(host_id)
    if not host:
        raise NonRecoverableError(
            'Could not find host with ID {host_id}.'.format(host_id=host_id))
    return {
        'name': host.name,
        'cluster': host.parent._moId if host.parent else '',
        'connection_state': str(host.summary.runtime.connectionState),
        'in_maintenance_mode': bool(host.summary.runtime.inMaintenanceMode),
        'license': sorted(host_client.assigned_license_keys(host_id)),
    }


@op
@with_host_client
def create(ctx, host_client, cluster, hostname, username, password,
           thumbprint, license, force, connected, max_wait_time):
    runtime_properties = ctx.instance.runtime_properties
    if runtime_properties.get(HOST_ID):
        ctx.logger.info('Host {host_id} is already added.'.format(
            host_id=runtime_properties[HOST_ID]))
        _read_host(ctx, host_client, license)
        return

    ctx.logger.debug('Beginning create with {inputs}'.format(
        inputs=prepare_for_log({
            'cluster': cluster,
            'hostname': hostname,
            'username': username,
            'password': password,
            'thumbprint': thumbprint,
            'force': force,
            'connected': connected,
        })))

    runtime_properties[HOST_CONFIG] = _host_config(
        cluster, hostname, username, password, thumbprint, license, force,
        connected)
    spec = host_client.connect_spec(hostname, username, password,
                                    thumbprint=thumbprint, force=force)
    host_id = host_client.add_host(
        cluster, spec,
        connected=_desired_connected(connected),
        license_key=license,
        instance=ctx.instance,
        max_wait_time=max_wait_time,
        resource_id=HOST_ID)

    runtime_properties[HOST_ID] = host_id
    ctx.logger.info('Host {hostname} added as {host_id}.'.format(
        hostname=hostname, host_id=host_id))
    _read_host(ctx, host_client, license)


@op
@with_host_client
def pull(ctx, host_client, license):
    _read_host(ctx, host_client, license)


def _update_connection(ctx, host_client, host_id, old_config, new_config,
                       spec, max_wait_time):
    changed = changed_keys(old_config, new_config, HOST_CONNECTION_KEYS)
    if changed:
        ctx.logger.debug('{host_id}: Connection settings changed: '
                         '{changed}'.format(host_id=host_id,
                                            changed=', '.join(changed)))

    action = connection_action(
        connection_changed=bool(changed),
        desired_connected=new_config['connected'],
        actual_state=host_client.connection_state(host_id))

    if action == HOST_RECONNECT:
        ctx.logger.info('Reconnecting host {host_id}.'.format(
            host_id=host_id))
        host_client.reconnect_host(host_id, spec,
                                   max_wait_time=max_wait_time)
    elif action == HOST_DISCONNECT:
        ctx.logger.info('Disconnecting host {host_id}.'.format(
            host_id=host_id))
        host_client.disconnect_host(host_id, max_wait_time=max_wait_time)
    else:
        ctx.logger.debug('{host_id}: Connection is up to date ({action}).'
                         .format(host_id=host_id, action=action))


def _update_license(ctx, host_client, host_id, license):
    if not license:
        ctx.logger.info(
            "License removed from configuration, keeping the license "
            "assigned to host {host_id}.".format(host_id=host_id))
        return
    if license not in host_client.list_license_keys():
        raise NonRecoverableError(
            'license key supplied ({key}) did not match against known '
            'license keys'.format(key=license))
    host_client.assign_license(host_id, license)


@op
@with_host_client
def update(ctx, host_client, cluster, hostname, username, password,
           thumbprint, license, force, connected, max_wait_time):
    runtime_properties = ctx.instance.runtime_properties
    host_id = runtime_properties.get(HOST_ID)
    if not host_id:
        raise NonRecoverableError('Host is not created, nothing to update.')

    ctx.logger.debug('{host_id}: Beginning update'.format(host_id=host_id))
    old_config = runtime_properties.get(HOST_CONFIG) or {}
    new_config = _host_config(cluster, hostname, username, password,
                              thumbprint, license, force, connected)
    spec = host_client.connect_spec(hostname, username, password,
                                    thumbprint=thumbprint, force=force)
    _update_connection(ctx, host_client, host_id, old_config, new_config,
                       spec, max_wait_time)

    for field in changed_keys(old_config, new_config,
                              ['license', 'cluster']):
        try:
            if field == 'license':
                _update_license(ctx, host_client, host_id, license)
            else:
                host_client.move_host(host_id, cluster,
                                      max_wait_time=max_wait_time)
        except (NonRecoverableError, vmodl.MethodFault) as err:
            raise NonRecoverableError(
                'error while updating {field}: {err}'.format(
                    field=field, err=str(err)))

    runtime_properties[HOST_CONFIG] = new_config
    ctx.logger.debug('{host_id}: Update complete'.format(host_id=host_id))
    _read_host(ctx, host_client, license)


@op
@with_host_client
def delete(ctx, host_client, max_wait_time):
    host_id = ctx.instance.runtime_properties.get(HOST_ID)
    if not host_id:
        ctx.logger.info('Host was not added, nothing to delete.')
        return

    if not host_client.get_host(host_id):
        ctx.logger.info('Host {host_id} is already removed.'.format(
            host_id=host_id))
        return

    ctx.logger.debug('{host_id}: Beginning delete'.format(host_id=host_id))
    host_client.remove_host(host_id, instance=ctx.instance,
                            max_wait_time=max_wait_time)
    ctx.logger.info('Host {host_id} removed.'.format(host_id=host_id))


@op
@with_host_client
def poststart(ctx, host_client, **_):
    host_id = ctx.instance.runtime_properties.get(HOST_ID)
    if not host_id:
        raise NonRecoverableError("There is no host id.")
    ctx.instance.runtime_properties[EXPECTED_CONFIGURATION] = \
        _host_state(host_client, host_id)


@op
@with_host_client
def check_drift(ctx, host_client, **_):
    host_id = ctx.instance.runtime_properties.get(HOST_ID)
    if not host_id:
        raise NonRecoverableError("There is no host id.")
    expected_configuration = ctx.instance.runtime_properties[
        EXPECTED_CONFIGURATION]
    utils_check_drift(ctx.logger,
                      expected_configuration,
                      _host_state(host_client, host_id))
