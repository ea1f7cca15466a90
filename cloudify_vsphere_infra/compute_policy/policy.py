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
from . import ComputePolicies, capability_for, policy_type_of

from vsphere_infra_common.utils import op
from vsphere_infra_common import (
    remove_runtime_properties,
)
from vsphere_infra_common.constants import (
    COMPUTE_POLICY_ID,
    VSPHERE_RESOURCE_EXTERNAL,
)


def _read_policy(ctx, policies):
    runtime_properties = ctx.instance.runtime_properties
    policy_id = runtime_properties.get(COMPUTE_POLICY_ID)
    if not policy_id:
        ctx.logger.debug('No compute policy to read.')
        return

    ctx.logger.debug('{policy_id}: Beginning read'.format(
        policy_id=policy_id))
    policy = policies.get(policy_id)
    if not policy:
        ctx.logger.info(
            '{policy_id}: Compute policy not found, removing from '
            'state.'.format(policy_id=policy_id))
        remove_runtime_properties()
        return

    runtime_properties['name'] = policy.get('name')
    runtime_properties['description'] = policy.get('description', '')
    runtime_properties['policy_type'] = policy_type_of(
        policy.get('capability'))
    ctx.logger.debug('{policy_id}: Read completed successfully'.format(
        policy_id=policy_id))


@op
def create(ctx, connection_config, name, description, policy_type, vm_tag,
           host_tag, use_external_resource, resource_id):
    runtime_properties = ctx.instance.runtime_properties
    if runtime_properties.get(COMPUTE_POLICY_ID):
        ctx.logger.info('Compute policy {policy_id} is already created.'
                        .format(policy_id=runtime_properties[
                            COMPUTE_POLICY_ID]))
        return

    policies = ComputePolicies(connection_config)
    if use_external_resource:
        details = policies.get(resource_id) if resource_id else None
        if not details:
            raise NonRecoverableError(
                'Could not use existing compute policy "{policy_id}" as no '
                'compute policy by that ID exists!'.format(
                    policy_id=resource_id))
        runtime_properties[VSPHERE_RESOURCE_EXTERNAL] = True
        runtime_properties[COMPUTE_POLICY_ID] = resource_id
        runtime_properties['vm_tag'] = details.get('vm_tag', '')
        runtime_properties['host_tag'] = details.get('host_tag', '')
        _read_policy(ctx, policies)
        return

    # fail before calling vSphere
    capability_for(policy_type)
    ctx.logger.debug('Beginning create of compute policy {name}'.format(
        name=name))
    policy_id = policies.create(name, description, policy_type, vm_tag,
                                host_tag=host_tag)
    runtime_properties[VSPHERE_RESOURCE_EXTERNAL] = False
    runtime_properties[COMPUTE_POLICY_ID] = policy_id
    runtime_properties['vm_tag'] = vm_tag
    runtime_properties['host_tag'] = host_tag or ''
    ctx.logger.info('Compute policy {name} created with id {policy_id}.'
                    .format(name=name, policy_id=policy_id))
    _read_policy(ctx, policies)


@op
def pull(ctx, connection_config):
    _read_policy(ctx, ComputePolicies(connection_config))


@op
def delete(ctx, connection_config):
    runtime_properties = ctx.instance.runtime_properties
    policy_id = runtime_properties.get(COMPUTE_POLICY_ID)
    if not policy_id:
        ctx.logger.info('Compute policy was not created, nothing to delete.')
        return

    if runtime_properties.get(VSPHERE_RESOURCE_EXTERNAL):
        ctx.logger.info('Not deleting existing compute policy: {policy_id}'
                        .format(policy_id=policy_id))
    else:
        policies = ComputePolicies(connection_config)
        if policies.get(policy_id):
            policies.delete(policy_id)
            ctx.logger.info('Compute policy {policy_id} deleted.'.format(
                policy_id=policy_id))
        else:
            ctx.logger.info('Compute policy {policy_id} is already deleted.'
                            .format(policy_id=policy_id))
    remove_runtime_properties()


@op
def lookup(ctx, connection_config, name):
    policies = ComputePolicies(connection_config)
    summary = policies.find_by_name(name)
    if not summary:
        raise NonRecoverableError(
            'error fetching compute policy: {name}'.format(name=name))

    policy_id = summary['policy']
    details = policies.get(policy_id) or {}
    runtime_properties = ctx.instance.runtime_properties
    runtime_properties[COMPUTE_POLICY_ID] = policy_id
    runtime_properties['name'] = summary.get('name')
    runtime_properties['policy_type'] = policy_type_of(
        summary.get('capability'))
    runtime_properties['description'] = details.get(
        'description', summary.get('description', ''))
    runtime_properties['vm_tag'] = details.get('vm_tag', '')
    runtime_properties['host_tag'] = details.get('host_tag', '')
    ctx.logger.info('Found compute policy {name} with id {policy_id}.'.format(
        name=name, policy_id=policy_id))
