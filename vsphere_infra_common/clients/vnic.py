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
import netaddr
from pyVmomi import vim

# Cloudify imports
from cloudify.exceptions import NonRecoverableError

# This package imports
from . import VsphereClient


def split_vnic_id(vnic_id):
    """'host-10_vmk1' -> ('host-10', 'vmk1')"""
    host_id, sep, device = (vnic_id or '').partition('_')
    if not sep or not host_id or not device:
        raise NonRecoverableError(
            'Invalid vNIC ID {vnic_id}, expected <host ID>_<device>.'.format(
                vnic_id=vnic_id))
    return host_id, device


def join_vnic_id(host_id, device):
    return '{host_id}_{device}'.format(host_id=host_id, device=device)


def _ipv4_config(ip_config, ipv4):
    dhcp = bool(ipv4.get('dhcp'))
    address = ipv4.get('ip') or ''
    netmask = ipv4.get('netmask') or ''
    if dhcp and address:
        raise NonRecoverableError('ip and dhcp are mutually exclusive.')
    ip_config.dhcp = dhcp
    if address and netmask:
        for value in (address, netmask):
            if not netaddr.valid_ipv4(value):
                raise NonRecoverableError(
                    '{value} is not a valid IPv4 address.'.format(
                        value=value))
        ip_config.ipAddress = address
        ip_config.subnetMask = netmask


def _ipv6_config(ipv6):
    dhcp = bool(ipv6.get('dhcp'))
    autoconfig = bool(ipv6.get('autoconfig'))
    addresses = ipv6.get('addresses') or []
    if dhcp and (autoconfig or addresses):
        raise NonRecoverableError(
            'IPv6 dhcp cannot be combined with autoconfig or a list of '
            'addresses.')
    if autoconfig and addresses:
        raise NonRecoverableError(
            'IPv6 autoconfig cannot be combined with a list of addresses.')

    config = vim.host.IpConfig.IpV6AddressConfiguration()
    config.dhcpV6Enabled = dhcp
    config.autoConfigurationEnabled = autoconfig
    config.ipV6Address = []
    for address in addresses:
        try:
            network = netaddr.IPNetwork(address)
        except (netaddr.AddrFormatError, ValueError):
            network = None
        if network is None or network.version != 6:
            raise NonRecoverableError(
                '{address} is not a valid IPv6 address, expected '
                '<address>/<prefix length>.'.format(address=address))
        ipv6_address = vim.host.IpConfig.IpV6Address()
        ipv6_address.ipAddress = str(network.ip)
        ipv6_address.prefixLength = network.prefixlen
        ipv6_address.operation = 'add'
        config.ipV6Address.append(ipv6_address)
    return config


def nic_spec(portgroup=None, distributed_switch_port=None,
             distributed_port_group=None, ipv4=None, ipv6=None, mac=None,
             mtu=None):
    if portgroup and distributed_switch_port:
        raise NonRecoverableError(
            'portgroup and distributed_switch_port settings are mutually '
            'exclusive.')

    spec = vim.host.VirtualNic.Specification()
    if portgroup:
        spec.portgroup = portgroup
    else:
        port = vim.dvs.PortConnection()
        port.switchUuid = distributed_switch_port
        port.portgroupKey = distributed_port_group
        spec.distributedVirtualPort = port

    ip_config = vim.host.IpConfig()
    route_config = vim.host.IpRouteConfig()
    if ipv4:
        _ipv4_config(ip_config, ipv4)
        if ipv4.get('gw'):
            route_config.defaultGateway = ipv4['gw']
    if ipv6:
        ip_config.ipV6Config = _ipv6_config(ipv6)
        if ipv6.get('gw'):
            route_config.ipV6DefaultGateway = ipv6['gw']
    spec.ip = ip_config

    if route_config.defaultGateway or route_config.ipV6DefaultGateway:
        spec.ipRouteSpec = vim.host.VirtualNic.IpRouteSpec()
        spec.ipRouteSpec.ipRouteConfig = route_config

    if mac:
        spec.mac = mac
    if mtu:
        spec.mtu = int(mtu)
    return spec


def describe_vnic(vnic):
    """Flatten a HostVirtualNic into runtime property values."""
    spec = vnic.spec
    port = spec.distributedVirtualPort
    ip = spec.ip
    ipv6 = ip.ipV6Config if ip else None
    return {
        'portgroup': vnic.portgroup or '',
        'distributed_switch_port': port.switchUuid if port else '',
        'distributed_port_group': port.portgroupKey if port else '',
        'mtu': spec.mtu,
        'mac': spec.mac,
        'ipv4': {
            'dhcp': bool(ip.dhcp) if ip else False,
            'ip': (ip.ipAddress or '') if ip else '',
            'netmask': (ip.subnetMask or '') if ip else '',
        },
        'ipv6': {
            'dhcp': bool(ipv6.dhcpV6Enabled) if ipv6 else False,
            'autoconfig':
                bool(ipv6.autoConfigurationEnabled) if ipv6 else False,
            'addresses': [
                '{0}/{1}'.format(address.ipAddress, address.prefixLength)
                for address in (ipv6.ipV6Address if ipv6 else [])
                if address.origin == 'manual'
            ],
        },
    }


class VnicClient(VsphereClient):

    def _get_host(self, host_id):
        return self._get_obj_by_id(vim.HostSystem, host_id, use_cache=False)

    def _network_system(self, host_id):
        host = self._get_host(host_id)
        if not host:
            raise NonRecoverableError(
                'Could not find host with ID {host_id}.'.format(
                    host_id=host_id))
        return host.obj.configManager.networkSystem

    def add_virtual_nic(self, host_id, spec, portgroup=None):
        network_system = self._network_system(host_id)
        self._logger.debug(
            'Adding virtual NIC on host {host_id}: {spec}'.format(
                host_id=host_id, spec=spec))
        device = network_system.AddVirtualNic(portgroup=portgroup or '',
                                              nic=spec)
        self._logger.debug('Created NIC with ID: {device}'.format(
            device=device))
        return device

    def get_virtual_nic(self, host_id, device):
        host = self._get_host(host_id)
        if not host:
            self._logger.debug(
                'Host {host_id} not found.'.format(host_id=host_id))
            return None
        for vnic in host.obj.config.network.vnic:
            if vnic.device == device:
                return vnic
        self._logger.debug(
            'VMKernel interface with id {device} not found.'.format(
                device=device))
        return None

    def update_virtual_nic(self, host_id, device, spec):
        network_system = self._network_system(host_id)
        self._logger.debug(
            'Updating virtual NIC {device} on host {host_id}.'.format(
                device=device, host_id=host_id))
        network_system.UpdateVirtualNic(device=device, nic=spec)

    def remove_virtual_nic(self, host_id, device):
        host = self._get_host(host_id)
        if not host:
            self._logger.info(
                'Host {host_id} is gone, nothing to remove.'.format(
                    host_id=host_id))
            return
        try:
            host.obj.configManager.networkSystem.RemoveVirtualNic(
                device=device)
        except vim.fault.NotFound:
            self._logger.info(
                'Virtual NIC {device} was already removed.'.format(
                    device=device))
