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

# Cloudify imports
from cloudify.exceptions import NonRecoverableError

# This package imports
from vsphere_infra_common import (
    with_vnic_client,
    remove_runtime_properties,
)
from vsphere_infra_common.clients.vnic import (
    nic_spec,
    describe_vnic,
    join_vnic_id,
    split_vnic_id,
)
from vsphere_infra_common.constants import (
    VNIC_ID,
    VNIC_MAC,
    VNIC_MTU,
    VNIC_IPV4,
    VNIC_IPV6,
    VNIC_DVS_PORT,
    VNIC_PORTGROUP,
    VNIC_DV_PORTGROUP,
    EXPECTED_CONFIGURATION,
    VSPHERE_RESOURCE_EXTERNAL,
)
from vsphere_infra_common.utils import (
    op,
    check_drift as utils_check_drift,
)


def _read_vnic(ctx, vnic_client):
    runtime_properties = ctx.instance.runtime_properties
    vnic_id = runtime_properties.get(VNIC_ID)
    if not vnic_id:
        ctx.logger.debug('No vNIC to read.')
        return

    ctx.logger.debug('{vnic_id}: Beginning read'.format(vnic_id=vnic_id))
    host_id, device = split_vnic_id(vnic_id)
    vnic = vnic_client.get_virtual_nic(host_id, device)
    if not vnic:
        ctx.logger.info(
            '{vnic_id}: vNIC not found, removing from state.'.format(
                vnic_id=vnic_id))
        remove_runtime_properties()
        return

    details = describe_vnic(vnic)
    for key in (VNIC_PORTGROUP, VNIC_DVS_PORT, VNIC_DV_PORTGROUP, VNIC_MTU,
                VNIC_MAC, VNIC_IPV4, VNIC_IPV6):
        runtime_properties[key] = details[key]
    ctx.logger.debug('{vnic_id}: Read complete'.format(vnic_id=vnic_id))


@op
@with_vnic_client
def create(ctx, vnic_client, host, portgroup, distributed_switch_port,
           distributed_port_group, ipv4, ipv6, mac, mtu,
           use_external_resource, resource_id):
    runtime_properties = ctx.instance.runtime_properties
    if runtime_properties.get(VNIC_ID):
        ctx.logger.info('vNIC {vnic_id} is already created.'.format(
            vnic_id=runtime_properties[VNIC_ID]))
        return

    if use_external_resource:
        host_id, device = split_vnic_id(resource_id)
        if not vnic_client.get_virtual_nic(host_id, device):
            raise NonRecoverableError(
                'Could not use existing vNIC "{vnic_id}" as no vNIC by '
                'that ID exists!'.format(vnic_id=resource_id))
        ctx.logger.info('Using existing vNIC {vnic_id}.'.format(
            vnic_id=resource_id))
        runtime_properties[VSPHERE_RESOURCE_EXTERNAL] = True
        runtime_properties[VNIC_ID] = resource_id
        _read_vnic(ctx, vnic_client)
        return

    ctx.logger.debug('Beginning create on host {host}'.format(host=host))
    spec = nic_spec(portgroup=portgroup,
                    distributed_switch_port=distributed_switch_port,
                    distributed_port_group=distributed_port_group,
                    ipv4=ipv4,
                    ipv6=ipv6,
                    mac=mac,
                    mtu=mtu)
    device = vnic_client.add_virtual_nic(host, spec, portgroup=portgroup)
    runtime_properties[VSPHERE_RESOURCE_EXTERNAL] = False
    runtime_properties[VNIC_ID] = join_vnic_id(host, device)
    ctx.logger.info('vNIC {vnic_id} created.'.format(
        vnic_id=runtime_properties[VNIC_ID]))
    _read_vnic(ctx, vnic_client)


@op
@with_vnic_client
def pull(ctx, vnic_client):
    _read_vnic(ctx, vnic_client)


@op
@with_vnic_client
def update(ctx, vnic_client, portgroup, distributed_switch_port,
           distributed_port_group, ipv4, ipv6, mac, mtu):
    vnic_id = ctx.instance.runtime_properties.get(VNIC_ID)
    if not vnic_id:
        raise NonRecoverableError('vNIC is not created, nothing to update.')

    ctx.logger.debug('{vnic_id}: Beginning update'.format(vnic_id=vnic_id))
    host_id, device = split_vnic_id(vnic_id)
    spec = nic_spec(portgroup=portgroup,
                    distributed_switch_port=distributed_switch_port,
                    distributed_port_group=distributed_port_group,
                    ipv4=ipv4,
                    ipv6=ipv6,
                    mac=mac,
                    mtu=mtu)
    vnic_client.update_virtual_nic(host_id, device, spec)
    ctx.logger.debug('{vnic_id}: Update complete'.format(vnic_id=vnic_id))
    _read_vnic(ctx, vnic_client)


@op
@with_vnic_client
def delete(ctx, vnic_client):
    runtime_properties = ctx.instance.runtime_properties
    vnic_id = runtime_properties.get(VNIC_ID)
    if not vnic_id:
        ctx.logger.info('vNIC was not created, nothing to delete.')
        return

    if runtime_properties.get(VSPHERE_RESOURCE_EXTERNAL):
        ctx.logger.info('Not deleting existing vNIC: {vnic_id}'.format(
            vnic_id=vnic_id))
        return

    ctx.logger.debug('{vnic_id}: Beginning delete'.format(vnic_id=vnic_id))
    host_id, device = split_vnic_id(vnic_id)
    vnic_client.remove_virtual_nic(host_id, device)
    ctx.logger.info('vNIC {vnic_id} removed.'.format(vnic_id=vnic_id))


def _vnic_state(ctx, vnic_client):
    vnic_id = ctx.instance.runtime_properties.get(VNIC_ID)
    if not vnic_id:
        raise NonRecoverableError("There is no vNIC id.")
    vnic = vnic_client.get_virtual_nic(*split_vnic_id(vnic_id))
    if not vnic:
        raise NonRecoverableError(
            'vNIC {vnic_id} not found.'.format(vnic_id=vnic_id))
    return describe_vnic(vnic)


@op
@with_vnic_client
def poststart(ctx, vnic_client, **_):
    ctx.instance.runtime_properties[EXPECTED_CONFIGURATION] = \
        _vnic_state(ctx, vnic_client)


@op
@with_vnic_client
def check_drift(ctx, vnic_client, **_):
    current_configuration = _vnic_state(ctx, vnic_client)
    expected_configuration = ctx.instance.runtime_properties[
        EXPECTED_CONFIGURATION]
    utils_check_drift(ctx.logger,
                      expected_configuration,
                      current_configuration)
