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
import ssl
import time
import atexit
import hashlib
from collections import namedtuple
from urllib.parse import unquote

# Third party imports
import yaml
from pyVmomi import vim, vmodl
from pyVim.connect import SmartConnect, SmartStubAdapter, Disconnect

# Cloudify imports
from cloudify.exceptions import NonRecoverableError, OperationRetry

# This package imports
from ..constants import (
    ASYNC_TASK_ID,
    TASK_CHECK_SLEEP,
    ASYNC_RESOURCE_ID,
    DEFAULT_CONFIG_PATH,
    DEFAULT_SESSION_PATH,
    DEFAULT_MAX_WAIT_TIME,
)
from ..utils import logger


class Config(object):

    _path_options = [
        {'source': '/root/connection_config.yaml', 'warn': True},
        {'source': '~/connection_config.yaml', 'warn': True},
        {'source': DEFAULT_CONFIG_PATH, 'warn': False},
        {'env': True, 'source': 'CONNECTION_CONFIG_PATH', 'warn': True},
        {'env': True, 'source': 'CFY_VSPHERE_CONFIG_PATH', 'warn': False},
    ]

    def _find_config_file(self):
        selected = DEFAULT_CONFIG_PATH
        warnings = []

        for path in self._path_options:
            source = path['source']
            if path.get('env'):
                source = os.getenv(source)
            if source:
                source = os.path.expanduser(source)
                if os.path.isfile(source):
                    selected = source
                    if path['warn']:
                        warnings.append(path['source'])

        if warnings:
            logger().warn(
                "Deprecated configuration options were found: {0}".format(
                    "; ".join(warnings)),
            )

        return selected

    def get(self):
        cfg = {}
        config_path = self._find_config_file()
        try:
            with open(config_path) as f:
                cfg = yaml.safe_load(f.read()) or {}
        except IOError:
            logger().warn(
                "Unable to read configuration file {config_path}.".format(
                    config_path=config_path))

        return cfg


def _service_instance(stub):
    return vim.ServiceInstance('ServiceInstance', stub)


class _ContainerView(object):

    def __init__(self, obj_type, service_instance):
        self.si = service_instance
        self.obj_type = obj_type

    def __enter__(self):
        container = self.si.content.rootFolder
        self.view_ref = self.si.content.viewManager.CreateContainerView(
            container=container,
            type=self.obj_type,
            recursive=True,
        )
        return self.view_ref

    def __exit__(self, *args):
        self.view_ref.Destroy()


class VsphereClient(object):

    def __init__(self, ctx_logger=None):
        self.cfg = {}
        self.si = None
        self._cache = {}
        self._logger = ctx_logger or logger()

    def get(self, config=None, *_, **__):
        static_config = Config().get()
        self.cfg.update(static_config)
        if config:
            self.cfg.update(config)
        return self.connect(self.cfg)

    def _get_ssl_context(self, cfg):
        certificate_path = cfg.get('certificate_path')
        allow_insecure = cfg.get('allow_insecure', False)

        if certificate_path and allow_insecure:
            raise NonRecoverableError(
                'Cannot connect when certificate_path and allow_insecure '
                'are both set. Unable to determine whether connection should '
                'be secure or insecure.'
            )

        if allow_insecure:
            self._logger.warn(
                'SSL verification disabled for the connection to '
                '{host}.'.format(host=cfg.get('host')))
            ssl_context = ssl.create_default_context()
            ssl_context.check_hostname = False
            ssl_context.verify_mode = ssl.CERT_NONE
            return ssl_context

        if not certificate_path:
            return ssl.create_default_context()

        if not os.path.exists(certificate_path):
            raise NonRecoverableError(
                'Certificate was not found in {path}.'.format(
                    path=certificate_path,
                )
            )
        elif not os.path.isfile(certificate_path):
            raise NonRecoverableError(
                'Found directory at {path}, but the certificate_path '
                'must be a file.'.format(
                    path=certificate_path,
                )
            )
        try:
            return ssl.create_default_context(cafile=certificate_path)
        except ssl.SSLError as err:
            if 'unknown error' in str(err).lower() or \
                    'no certificate or crl found' in str(err).lower():
                raise NonRecoverableError(
                    'Could not create SSL context with provided '
                    'certificate {path}. This problem may be caused by '
                    'the certificate not being in the correct format '
                    '(PEM).'.format(path=certificate_path))
            raise

    def connect(self, cfg):
        host = cfg.get('host') or cfg.get('vsphere_server')
        if not host:
            raise NonRecoverableError(
                'one of host or vsphere_server must be provided')
        cfg['host'] = host
        username = cfg['username']
        password = cfg['password']
        port = cfg.get('port', 443)
        persist_session = cfg.get('persist_session', False)

        ssl_context = self._get_ssl_context(cfg)

        if persist_session:
            self.si = self._restore_session(cfg, ssl_context)
            if self.si:
                self._logger.debug(
                    'Cached SOAP session loaded successfully')
                return self

        self._logger.debug(
            'Creating new SOAP API session on endpoint {host}'.format(
                host=host))
        try:
            self.si = SmartConnect(host=host,
                                   user=username,
                                   pwd=password,
                                   port=int(port),
                                   sslContext=ssl_context)
        except vim.fault.InvalidLogin:
            raise NonRecoverableError(
                'Could not login to vSphere on {host} with provided '
                'credentials'.format(host=host)
            )
        except vim.fault.HostConnectFault as err:
            if 'certificate verify failed' in err.msg:
                raise NonRecoverableError(
                    'Could not connect to vSphere on {host} with provided '
                    'certificate {path}. Certificate was not valid.'.format(
                        host=host,
                        path=cfg.get('certificate_path'),
                    )
                )
            raise

        if persist_session:
            self._save_session(cfg)
        else:
            atexit.register(Disconnect, self.si)
        return self

    def _session_file(self, cfg):
        # Keyed on the endpoint without password and the insecure setting
        key = 'https://{user}@{host}:{port}/sdk#insecure={insecure}'.format(
            user=cfg['username'],
            host=cfg['host'],
            port=cfg.get('port', 443),
            insecure=str(bool(cfg.get('allow_insecure', False))).lower())
        name = hashlib.sha1(key.encode('utf-8')).hexdigest()
        session_path = cfg.get('vim_session_path') or DEFAULT_SESSION_PATH
        return os.path.join(os.path.expanduser(session_path), name)

    def _save_session(self, cfg):
        session_file = self._session_file(cfg)
        self._logger.debug(
            'Will persist SOAP client session data to {path}'.format(
                path=session_file))
        os.makedirs(os.path.dirname(session_file), mode=0o700, exist_ok=True)
        fd = os.open(session_file, os.O_CREAT | os.O_WRONLY | os.O_TRUNC,
                     0o600)
        with os.fdopen(fd, 'w') as f:
            yaml.safe_dump({'host': cfg['host'],
                            'cookie': self.si._stub.cookie}, f)

    def _restore_session(self, cfg, ssl_context):
        session_file = self._session_file(cfg)
        if not os.path.isfile(session_file):
            self._logger.debug(
                'SOAP client session data not found in {path}'.format(
                    path=session_file))
            return None

        with open(session_file) as f:
            saved = yaml.safe_load(f) or {}
        if not saved.get('cookie'):
            return None

        stub = SmartStubAdapter(host=cfg['host'],
                                port=int(cfg.get('port', 443)),
                                sslContext=ssl_context)
        stub.cookie = saved['cookie']
        si = _service_instance(stub)
        try:
            session = si.content.sessionManager.currentSession
        except (vmodl.fault.ManagedObjectNotFound,
                vim.fault.NotAuthenticated):
            self._logger.debug(
                'Cached SOAP client session is no longer valid, '
                'new session necessary')
            return None

        if session is None:
            self._logger.debug(
                'Unauthenticated session, new session necessary')
            return None
        return si

    def validate_virtual_center(self):
        about = self.si.content.about
        if about.apiType != 'VirtualCenter':
            raise NonRecoverableError(
                'This operation is only supported on vCenter, connected '
                'endpoint is {api_type} {version}.'.format(
                    api_type=about.apiType, version=about.version))

    def _get_normalised_name(self, name, tolower=True):
        """
            Get the normalised form of a platform entity's name.
        """
        name = unquote(name)
        return name.lower() if tolower else name

    def _make_cached_object(self, obj_name, props, platform_results,
                            root_object=True):
        """Build a namedtuple, nesting dotted property paths.

        A missing property raises KeyError.
        """
        args = {}
        nested = {}
        for prop in props:
            head, _, tail = prop.partition('.')
            if tail:
                nested.setdefault(head, []).append(tail)
            else:
                args[head] = platform_results[prop]

        for key, sub_props in nested.items():
            prefix = key + '.'
            args[key] = self._make_cached_object(
                obj_name='{name}_{sub}'.format(name=obj_name, sub=key),
                props=sub_props,
                platform_results={
                    name[len(prefix):]: value
                    for name, value in platform_results.items()
                    if name.startswith(prefix)
                },
                root_object=False,
            )

        if root_object:
            args['id'] = platform_results['obj']._moId
            args['obj'] = platform_results['obj']

        if 'name' in args:
            args['name'] = self._get_normalised_name(args['name'], False)

        return namedtuple(obj_name, sorted(args))(**args)

    def _get_entity(self,
                    entity_name,
                    props,
                    vimtype,
                    use_cache=True,
                    skip_broken_objects=False):

        if entity_name in self._cache and use_cache:
            return self._cache[entity_name]

        platform_results = self._collect_properties(
            vimtype,
            path_set=props,
        )

        results = []
        for result in platform_results:
            try:
                results.append(
                    self._make_cached_object(
                        obj_name=entity_name,
                        props=props,
                        platform_results=result,
                    )
                )
            except KeyError as err:
                message = (
                    'Could not retrieve all details for {type} object. '
                    '{err} was missing. Object ID was {id}.'.format(
                        type=entity_name,
                        err=str(err),
                        id=result['obj']._moId,
                    )
                )
                if skip_broken_objects:
                    self._logger.warn(message)
                else:
                    raise NonRecoverableError(message)

        self._cache[entity_name] = results

        return results

    def _get_clusters(self, use_cache=True):
        return self._get_entity(
            entity_name='cluster',
            props=['name'],
            vimtype=vim.ClusterComputeResource,
            use_cache=use_cache,
        )

    def _get_datacenters(self, use_cache=True):
        return self._get_entity(
            entity_name='datacenter',
            props=['name', 'datastore'],
            vimtype=vim.Datacenter,
            use_cache=use_cache,
        )

    def _get_datastores(self, use_cache=True):
        properties = [
            'name',
            'overallStatus',
            'summary.accessible',
            'summary.freeSpace',
        ]

        return self._get_entity(
            entity_name='datastore',
            props=properties,
            vimtype=vim.Datastore,
            use_cache=use_cache
        )

    def _get_hosts(self, use_cache=True):
        properties = [
            'name',
            'parent',
            'summary.runtime.connectionState',
            'summary.runtime.inMaintenanceMode',
        ]

        return self._get_entity(
            entity_name='host',
            props=properties,
            vimtype=vim.HostSystem,
            use_cache=use_cache,
            skip_broken_objects=True,
        )

    def _get_tasks(self, *_, **__):
        task_object = namedtuple(
            'task',
            ['id', 'obj'],
        )

        return [task_object(id=task._moId, obj=task)
                for task in self.si.content.taskManager.recentTask]

    def _get_getter_method(self, vimtype):
        getter_method = {
            vim.ClusterComputeResource: self._get_clusters,
            vim.Datastore: self._get_datastores,
            vim.Datacenter: self._get_datacenters,
            vim.HostSystem: self._get_hosts,
            vim.Task: self._get_tasks}.get(vimtype)
        if not getter_method:
            raise NonRecoverableError(
                'Cannot retrieve objects for {vimtype}'.format(
                    vimtype=vimtype))
        return getter_method

    def _collect_properties(self, obj_type, path_set=None):
        """
        Collect properties for managed objects from a container view.

        Returns a list of dicts, one per managed object, mapping each
        property path to its value plus 'obj' for the object itself.
        """
        with _ContainerView([obj_type], self.si) as view_ref:
            collector = self.si.content.propertyCollector

            obj_spec = vmodl.query.PropertyCollector.ObjectSpec()
            obj_spec.obj = view_ref
            obj_spec.skip = True

            traversal_spec = vmodl.query.PropertyCollector.TraversalSpec()
            traversal_spec.name = 'traverseEntities'
            traversal_spec.path = 'view'
            traversal_spec.skip = False
            traversal_spec.type = view_ref.__class__
            obj_spec.selectSet = [traversal_spec]

            property_spec = vmodl.query.PropertyCollector.PropertySpec()
            property_spec.type = obj_type

            if not path_set:
                property_spec.all = True

            property_spec.pathSet = path_set

            filter_spec = vmodl.query.PropertyCollector.FilterSpec()
            filter_spec.objectSet = [obj_spec]
            filter_spec.propSet = [property_spec]

            props = collector.RetrieveContents([filter_spec])

        data = []
        for obj in props:
            properties = {}
            for prop in obj.propSet:
                properties[prop.name] = prop.val

            properties['obj'] = obj.obj

            data.append(properties)

        return data

    def _get_entity_datacenter(self, obj):
        if isinstance(obj, vim.Datacenter):
            return obj
        datacenter = None
        while True:
            if not hasattr(obj, 'parent'):
                break
            obj = obj.parent
            if isinstance(obj, vim.Datacenter):
                datacenter = obj
                break
        return datacenter

    def _get_obj_by_name(self, vimtype, name, use_cache=True,
                         datacenter_name=None):

        entities = self._get_getter_method(vimtype)(use_cache)
        name = self._get_normalised_name(name)
        for entity in entities:
            if name == entity.name.lower():
                # check if we are looking inside specific datacenter
                if datacenter_name:
                    entity_dc = self._get_entity_datacenter(entity.obj)
                    if entity_dc and entity_dc.name == datacenter_name:
                        return entity
                else:
                    return entity

    def _get_obj_by_id(self, vimtype, id, use_cache=True):
        entities = self._get_getter_method(vimtype)(use_cache)
        for entity in entities:
            if entity.id == id:
                return entity

    def _wait_for_task(self,
                       task=None,
                       instance=None,
                       max_wait_time=None,
                       resource_id=None):
        """Block until a vSphere task reaches a terminal state.

        Raises OperationRetry once max_wait_time is used up. With an
        instance, the task id is saved in runtime properties so a later
        attempt can resume waiting. Returns the task result.
        """

        if not isinstance(max_wait_time, int):
            if max_wait_time is not None:
                self._logger.warn(
                    'The provided max_wait_time {p} is not an integer. '
                    'Using default {d}.'.format(
                        p=max_wait_time, d=DEFAULT_MAX_WAIT_TIME))
            max_wait_time = DEFAULT_MAX_WAIT_TIME

        if not task and instance:
            task_id = instance.runtime_properties.get(ASYNC_TASK_ID)
            resource_id = instance.runtime_properties.get(ASYNC_RESOURCE_ID)
            self._logger.info('Check task_id {task_id}'.format(
                task_id=task_id))
            # no saved tasks
            if not task_id:
                return
        else:
            task_id = task._moId
            if instance:
                self._logger.info('Save task_id {task_id}'.format(
                    task_id=task_id))
                instance.runtime_properties[ASYNC_TASK_ID] = task_id
                instance.runtime_properties[ASYNC_RESOURCE_ID] = resource_id
                instance.update()

        if not task:
            task_obj = self._get_obj_by_id(vim.Task, task_id)
            if not task_obj:
                self._logger.info(
                    'Task {task_id} is no longer known to vSphere.'.format(
                        task_id=task_id))
                if instance:
                    instance.runtime_properties.pop(ASYNC_TASK_ID, None)
                    instance.runtime_properties.pop(ASYNC_RESOURCE_ID, None)
                    instance.update()
                return
            task = task_obj.obj

        retry_count = max_wait_time // TASK_CHECK_SLEEP

        while task.info.state in (vim.TaskInfo.State.queued,
                                  vim.TaskInfo.State.running):
            time.sleep(TASK_CHECK_SLEEP)

            self._logger.debug(
                'Task state {state} left {step} seconds'.format(
                    state=task.info.state,
                    step=(retry_count * TASK_CHECK_SLEEP)))
            retry_count -= 1
            if retry_count <= 0:
                raise OperationRetry(
                    'Task {task_id} is not finished yet.'.format(
                        task_id=task._moId))

        if instance:
            self._logger.info('Cleanup task_id {task_id}'.format(
                task_id=task_id))
            instance.runtime_properties.pop(ASYNC_TASK_ID, None)
            instance.runtime_properties.pop(ASYNC_RESOURCE_ID, None)
            instance.update()

        if task.info.state != vim.TaskInfo.State.success:
            raise NonRecoverableError(
                "Error during executing task on vSphere: '{0}'".format(
                    task.info.error))

        result = task.info.result
        if instance and resource_id and hasattr(result, '_moId'):
            self._logger.info('Save resource_id {resource_id}'.format(
                resource_id=result._moId))
            instance.runtime_properties[resource_id] = result._moId
            instance.update()
        return result
