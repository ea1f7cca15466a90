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
    with_datastore_file_client,
    remove_runtime_properties,
)
from vsphere_infra_common.constants import (
    DATASTORE_FILE_ID,
    DATASTORE_FILE_DEPRECATED,
    DATASTORE_FILE_SOURCE_KEYS,
    DATASTORE_FILE_DATASTORE_ID,
    DATASTORE_FILE_DATACENTER_ID,
    DATASTORE_FILE_SOURCE_CONFIG,
)
from vsphere_infra_common.utils import (
    op,
    changed_keys,
)


def validate(ctx, datacenter=None, datastore=None, datastore_id=None,
             source_datacenter=None, source_datastore=None,
             source_datastore_id=None, create_directories=None):
    """Check the location settings of a datastore file.

    Raises NonRecoverableError on missing or conflicting settings and logs
    a notice for every deprecated setting in use.
    """
    if not datacenter and not datastore_id:
        raise NonRecoverableError(
            'one of datacenter or datastore_id must be provided.')
    if datastore_id and (datacenter or datastore):
        raise NonRecoverableError(
            'datastore_id conflicts with datacenter and datastore.')
    if source_datastore_id and (source_datacenter or source_datastore):
        raise NonRecoverableError(
            'source_datastore_id conflicts with source_datacenter and '
            'source_datastore.')

    settings = {
        'datacenter': datacenter,
        'datastore': datastore,
        'source_datacenter': source_datacenter,
        'source_datastore': source_datastore,
    }
    for name in sorted(DATASTORE_FILE_DEPRECATED):
        if settings[name]:
            ctx.logger.warn(
                '{name} is deprecated and will be removed in a future '
                'release, use {replacement} instead.'.format(
                    name=name,
                    replacement=DATASTORE_FILE_DEPRECATED[name]))
    if create_directories is not None:
        ctx.logger.warn(
            'create_directories is deprecated and ignored, parent '
            'directories are always created.')


def _source_config(source_datacenter, source_datastore, source_datastore_id,
                   source_file):
    return {
        'source_datacenter': source_datacenter,
        'source_datastore': source_datastore,
        'source_datastore_id': source_datastore_id,
        'source_file': source_file,
    }


def _is_datastore_copy(source_datacenter, source_datastore,
                       source_datastore_id):
    return bool(source_datastore_id or source_datacenter or source_datastore)


def _save_location(ctx, datastore_file_client, datastore, destination_file):
    runtime_properties = ctx.instance.runtime_properties
    runtime_properties[DATASTORE_FILE_ID] = destination_file
    runtime_properties[DATASTORE_FILE_DATASTORE_ID] = datastore.id
    datacenter = datastore_file_client.datacenter_of(datastore)
    runtime_properties[DATASTORE_FILE_DATACENTER_ID] = \
        datacenter._moId if datacenter else ''


def _read_file(ctx, datastore_file_client, destination_file):
    runtime_properties = ctx.instance.runtime_properties
    file_id = runtime_properties.get(DATASTORE_FILE_ID)
    if not file_id:
        ctx.logger.debug('No datastore file to read.')
        return

    ctx.logger.debug('{file_id}: Beginning read'.format(file_id=file_id))
    destination_file = destination_file or file_id
    datastore = datastore_file_client.find_datastore(
        runtime_properties.get(DATASTORE_FILE_DATASTORE_ID))
    if not datastore or not datastore_file_client.file_exists(
            datastore, destination_file):
        ctx.logger.info(
            '{file_id}: File not found, removing from state.'.format(
                file_id=destination_file))
        remove_runtime_properties()
        return

    if file_id != destination_file:
        runtime_properties[DATASTORE_FILE_ID] = destination_file
    ctx.logger.debug('{file_id}: Read complete'.format(
        file_id=destination_file))


@op
@with_datastore_file_client
def create(ctx, datastore_file_client, datacenter, datastore, datastore_id,
           source_datacenter, source_datastore, source_datastore_id,
           source_file, destination_file, create_directories, max_wait_time):
    runtime_properties = ctx.instance.runtime_properties
    if runtime_properties.get(DATASTORE_FILE_ID):
        ctx.logger.info('File {file_id} is already created.'.format(
            file_id=runtime_properties[DATASTORE_FILE_ID]))
        return

    validate(ctx, datacenter=datacenter, datastore=datastore,
             datastore_id=datastore_id, source_datacenter=source_datacenter,
             source_datastore=source_datastore,
             source_datastore_id=source_datastore_id,
             create_directories=create_directories)
    if not source_file or not destination_file:
        raise NonRecoverableError(
            'source_file and destination_file must be provided.')

    ctx.logger.debug('{file}: Beginning create'.format(file=destination_file))
    destination_datastore = datastore_file_client.get_datastore(
        datastore_name=datastore,
        datacenter_name=datacenter,
        datastore_id=datastore_id)

    if _is_datastore_copy(source_datacenter, source_datastore,
                          source_datastore_id):
        source = datastore_file_client.get_datastore(
            datastore_name=source_datastore,
            datacenter_name=source_datacenter,
            datastore_id=source_datastore_id)
        datastore_file_client.copy_file(source, source_file,
                                        destination_datastore,
                                        destination_file,
                                        max_wait_time=max_wait_time)
    else:
        datastore_file_client.upload_file(destination_datastore,
                                          source_file,
                                          destination_file)

    _save_location(ctx, datastore_file_client, destination_datastore,
                   destination_file)
    runtime_properties[DATASTORE_FILE_SOURCE_CONFIG] = _source_config(
        source_datacenter, source_datastore, source_datastore_id,
        source_file)
    ctx.logger.info('File {file} created on datastore {datastore}.'.format(
        file=destination_file, datastore=destination_datastore.name))


@op
@with_datastore_file_client
def pull(ctx, datastore_file_client, destination_file):
    _read_file(ctx, datastore_file_client, destination_file)


@op
@with_datastore_file_client
def update(ctx, datastore_file_client, datacenter, datastore, datastore_id,
           source_datacenter, source_datastore, source_datastore_id,
           source_file, destination_file, create_directories, max_wait_time):
    runtime_properties = ctx.instance.runtime_properties
    file_id = runtime_properties.get(DATASTORE_FILE_ID)
    if not file_id:
        raise NonRecoverableError('File is not created, nothing to update.')

    ctx.logger.debug('{file_id}: Beginning update'.format(file_id=file_id))
    changed = changed_keys(
        runtime_properties.get(DATASTORE_FILE_SOURCE_CONFIG),
        _source_config(source_datacenter, source_datastore,
                       source_datastore_id, source_file),
        DATASTORE_FILE_SOURCE_KEYS)
    if changed:
        raise NonRecoverableError(
            '{field} cannot be updated, the file must be recreated'.format(
                field=changed[0]))

    validate(ctx, datacenter=datacenter, datastore=datastore,
             datastore_id=datastore_id, create_directories=create_directories)

    current_datastore = datastore_file_client.find_datastore(
        runtime_properties.get(DATASTORE_FILE_DATASTORE_ID))
    if not current_datastore:
        raise NonRecoverableError(
            'Unable to get datastore with ID {datastore_id}'.format(
                datastore_id=runtime_properties.get(
                    DATASTORE_FILE_DATASTORE_ID)))
    new_datastore = datastore_file_client.get_datastore(
        datastore_name=datastore,
        datacenter_name=datacenter,
        datastore_id=datastore_id)

    if current_datastore.id == new_datastore.id and \
            file_id == destination_file:
        ctx.logger.debug('{file_id}: Location is unchanged'.format(
            file_id=file_id))
        return

    datastore_file_client.move_file(current_datastore, file_id,
                                    new_datastore, destination_file,
                                    max_wait_time=max_wait_time)
    _save_location(ctx, datastore_file_client, new_datastore,
                   destination_file)
    ctx.logger.info('File moved to [{datastore}] {file}.'.format(
        datastore=new_datastore.name, file=destination_file))


@op
@with_datastore_file_client
def delete(ctx, datastore_file_client, max_wait_time):
    runtime_properties = ctx.instance.runtime_properties
    file_id = runtime_properties.get(DATASTORE_FILE_ID)
    if not file_id:
        ctx.logger.info('File was not created, nothing to delete.')
        return

    datastore = datastore_file_client.find_datastore(
        runtime_properties.get(DATASTORE_FILE_DATASTORE_ID))
    if not datastore or not datastore_file_client.file_exists(datastore,
                                                              file_id):
        ctx.logger.info('File {file_id} is already removed.'.format(
            file_id=file_id))
        return

    ctx.logger.debug('{file_id}: Beginning delete'.format(file_id=file_id))
    datastore_file_client.delete_file(datastore, file_id,
                                      max_wait_time=max_wait_time)
    ctx.logger.info('File {file_id} removed.'.format(file_id=file_id))
