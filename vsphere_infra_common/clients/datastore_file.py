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
import os
import posixpath

# Third party imports
import requests
from pyVmomi import vim

# Cloudify imports
from cloudify.exceptions import NonRecoverableError

# This package imports
from . import VsphereClient


def datastore_path(datastore, path):
    return "[{datastore}] {file_name}".format(
        datastore=datastore.name, file_name=path)


def is_virtual_disk(path):
    return path.endswith('.vmdk')


class DatastoreFileClient(VsphereClient):

    def get_datacenter(self, datacenter_name=None):
        if datacenter_name:
            datacenter = self._get_obj_by_name(vim.Datacenter,
                                               datacenter_name)
            if not datacenter:
                raise NonRecoverableError(
                    'Unable to get datacenter: {datacenter}'.format(
                        datacenter=datacenter_name))
            return datacenter

        datacenters = self._get_datacenters()
        if len(datacenters) != 1:
            raise NonRecoverableError(
                'default datacenter resolves to {count} instances, please '
                'specify one.'.format(count=len(datacenters)))
        return datacenters[0]

    def get_datastore(self, datastore_name=None, datacenter_name=None,
                      datastore_id=None):
        if datastore_id:
            datastore = self._get_obj_by_id(vim.Datastore, datastore_id)
            if not datastore:
                raise NonRecoverableError(
                    'Unable to get datastore with ID {datastore_id}'.format(
                        datastore_id=datastore_id))
            return datastore

        datacenter = self.get_datacenter(datacenter_name)
        if datastore_name:
            datastore = self._get_obj_by_name(
                vim.Datastore, datastore_name,
                datacenter_name=datacenter.name)
            if not datastore:
                raise NonRecoverableError(
                    'Unable to get datastore {datastore} in datacenter '
                    '{datacenter}'.format(datastore=datastore_name,
                                          datacenter=datacenter.name))
            return datastore

        # Default datastore: the only one in the datacenter
        if len(datacenter.datastore) != 1:
            raise NonRecoverableError(
                'default datastore resolves to multiple instances, please '
                'specify one in datacenter {datacenter}'.format(
                    datacenter=datacenter.name))
        return self._get_obj_by_id(vim.Datastore,
                                   datacenter.datastore[0]._moId)

    def find_datastore(self, datastore_id):
        return self._get_obj_by_id(vim.Datastore, datastore_id,
                                   use_cache=False)

    def datacenter_of(self, datastore):
        return self._get_entity_datacenter(datastore.obj)

    def file_exists(self, datastore, path):
        directory, file_name = posixpath.split(path)
        search_spec = vim.host.DatastoreBrowser.SearchSpec()
        search_spec.matchPattern = [file_name]
        task = datastore.obj.browser.SearchDatastore_Task(
            datastorePath=datastore_path(datastore, directory),
            searchSpec=search_spec)
        try:
            result = self._wait_for_task(task)
        except NonRecoverableError:
            if isinstance(task.info.error, vim.fault.FileNotFound):
                return False
            raise
        return any(found.path == file_name for found in result.file or [])

    def make_directory(self, datastore, path):
        directory = posixpath.dirname(path)
        if not directory:
            return
        self._logger.debug('{path}: Creating directory'.format(path=path))
        try:
            self.si.content.fileManager.MakeDirectory(
                name=datastore_path(datastore, directory),
                datacenter=self.datacenter_of(datastore),
                createParentDirectories=True)
        except vim.fault.FileAlreadyExists:
            self._logger.debug(
                '{directory}: Directory already exists'.format(
                    directory=directory))

    def copy_file(self, source_datastore, source_file,
                  destination_datastore, destination_file,
                  max_wait_time=None):
        self._logger.debug(
            'Copying file: [{sds}] {sf} to: [{dds}] {df}'.format(
                sds=source_datastore.name, sf=source_file,
                dds=destination_datastore.name, df=destination_file))
        self.make_directory(destination_datastore, destination_file)

        source_name = datastore_path(source_datastore, source_file)
        source_dc = self.datacenter_of(source_datastore)
        destination_name = datastore_path(destination_datastore,
                                          destination_file)
        destination_dc = self.datacenter_of(destination_datastore)
        if is_virtual_disk(destination_file):
            self._logger.debug(
                'File appears to be a VMDK. Using VirtualDiskManager')
            task = self.si.content.virtualDiskManager.CopyVirtualDisk_Task(
                sourceName=source_name,
                sourceDatacenter=source_dc,
                destName=destination_name,
                destDatacenter=destination_dc,
                force=True)
        else:
            self._logger.debug('File is not a VMDK. Using FileManager')
            task = self.si.content.fileManager.CopyDatastoreFile_Task(
                sourceName=source_name,
                sourceDatacenter=source_dc,
                destinationName=destination_name,
                destinationDatacenter=destination_dc,
                force=True)
        self._wait_for_task(task, max_wait_time=max_wait_time)

    def move_file(self, source_datastore, source_file,
                  destination_datastore, destination_file,
                  max_wait_time=None):
        self._logger.debug(
            'Moving file to: {path}'.format(
                path=datastore_path(destination_datastore,
                                    destination_file)))
        self.make_directory(destination_datastore, destination_file)
        task = self.si.content.fileManager.MoveDatastoreFile_Task(
            sourceName=datastore_path(source_datastore, source_file),
            sourceDatacenter=self.datacenter_of(source_datastore),
            destinationName=datastore_path(destination_datastore,
                                           destination_file),
            destinationDatacenter=self.datacenter_of(destination_datastore),
            force=True)
        self._wait_for_task(task, max_wait_time=max_wait_time)

    def delete_file(self, datastore, path, max_wait_time=None):
        task = self.si.content.fileManager.DeleteDatastoreFile_Task(
            name=datastore_path(datastore, path),
            datacenter=self.datacenter_of(datastore))
        self._wait_for_task(task, max_wait_time=max_wait_time)

    def _session_cookie(self):
        # vmware_soap_session="<value>"; Path=/; HttpOnly; Secure;
        client_cookie = self.si._stub.cookie
        cookie_name, rest = client_cookie.split("=", 1)
        cookie_value, attributes = (rest.split(";", 1) + [''])[:2]
        cookie_path = attributes.split(";", 1)[0].strip()
        return {cookie_name: " {value}; ${path}".format(value=cookie_value,
                                                        path=cookie_path)}

    def upload_file(self, datastore, local_file, remote_file):
        datacenter = self.datacenter_of(datastore)
        http_url = 'https://{host}:{port}/folder/{remote_file}'.format(
            host=self.cfg['host'],
            port=self.cfg.get('port', 443),
            remote_file=remote_file.lstrip('/'))
        params = {"dsName": datastore.name,
                  "dcPath": datacenter.name}
        verify = self.cfg.get('certificate_path') or \
            not self.cfg.get('allow_insecure', False)

        self._logger.debug('{remote_file}: Uploading file {local_file}'.format(
            remote_file=remote_file, local_file=local_file))
        if not os.path.isfile(local_file):
            raise NonRecoverableError(
                'Unable to find source file {local_file}'.format(
                    local_file=local_file))
        with open(local_file, 'rb') as file_data:
            response = requests.put(
                http_url,
                params=params,
                data=file_data,
                headers={'Content-Type': 'application/octet-stream'},
                cookies=self._session_cookie(),
                verify=verify)
        response.raise_for_status()
        return datastore_path(datastore, remote_file)
