# Copyright 2026 The sfdriver Authors. All rights reserved.
#
#    Licensed under the Apache License, Version 2.0 (the "License"); you may
#    not use this file except in compliance with the License. You may obtain
#    a copy of the License at
#
#         http://www.apache.org/licenses/LICENSE-2.0
#
#    Unless required by applicable law or agreed to in writing, software
#    distributed under the License is distributed on an "AS IS" BASIS, WITHOUT
#    WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied. See the
#    License for the specific language governing permissions and limitations
#    under the License.

import os
import posixpath

from oslo_concurrency import lockutils
from oslo_log import log as logging

from sfdriver import exception
from sfdriver.i18n import _
from sfdriver import iscsi
from sfdriver import jsonrpc
from sfdriver import mount
from sfdriver import utils

LOG = logging.getLogger(__name__)

CREATE_OPTIONS = ('size', 'qos', 'type', 'vag')


class SolidFireDriver(object):
    """Manages named SolidFire volumes of one tenant on this host.

    Version history:

    .. code-block:: none

        1.0.0 - Initial driver version.
        1.1.0 - Added volume types and QoS options.
        1.2.0 - Added SendTargets discovery and configurable CHAP.
        1.2.1 - Added volume access group option.
    """

    VERSION = '1.2.1'

    vendor_name = 'NetApp'
    product_name = 'SolidFire'
    storage_protocol = 'iSCSI'

    def __init__(self, configuration, proxy=None, connector=None,
                 mounter=None):
        if not configuration:
            reason = (_('%(product_name)s %(storage_protocol)s '
                        'configuration not found')
                      % {'product_name': self.product_name,
                         'storage_protocol': self.storage_protocol})
            raise exception.InvalidConfiguration(reason=reason)
        self.configuration = configuration
        self.proxy = proxy or jsonrpc.SfProxy(configuration)
        self.mounter = mounter or mount.Mounter(
            root_helper=configuration.sf_root_helper)
        self.connector = connector or iscsi.ISCSIConnector(
            configuration, self.proxy, mounter=self.mounter)
        self.tenant_name = configuration.sf_tenant_name
        self.tenant_id = None
        self.mount_point = configuration.sf_mount_point
        self.fs_type = configuration.sf_fs_type
        self.default_size = configuration.sf_default_volume_size
        self.volume_types = configuration.sf_volume_types or {}

    def do_setup(self):
        account = self.proxy.accounts.get_or_create(self.tenant_name)
        self.tenant_id = account['accountID']
        if not os.path.isdir(self.mount_point):
            os.makedirs(self.mount_point, 0o755)
        LOG.info('%(product_name)s driver %(version)s initialized for '
                 'tenant %(tenant)s (%(tenant_id)s)',
                 {'product_name': self.product_name,
                  'version': self.VERSION, 'tenant': self.tenant_name,
                  'tenant_id': self.tenant_id})

    def check_for_setup_error(self):
        required = ('sf_endpoint', 'sf_svip', 'sf_tenant_name')
        for name in required:
            if not getattr(self.configuration, name):
                reason = _('%(name)s is not set') % {'name': name}
                raise exception.InvalidConfiguration(reason=reason)
        if self.default_size < 1:
            reason = (_('sf_default_volume_size must be at least 1 GiB, '
                        'got %(size)s') % {'size': self.default_size})
            raise exception.InvalidConfiguration(reason=reason)
        for name, value in self.volume_types.items():
            try:
                utils.parse_qos(value)
            except exception.InvalidInput as error:
                reason = (_('invalid volume type %(name)s: %(error)s')
                          % {'name': name, 'error': error})
                raise exception.InvalidConfiguration(reason=reason)

    def _find(self, name):
        return self.proxy.volumes.find_by_name(name, self.tenant_id)

    @staticmethod
    def _format_options(options):
        formatted = {}
        for key, value in (options or {}).items():
            key = key.lower()
            if key not in CREATE_OPTIONS:
                LOG.debug('Ignoring unsupported create option %(key)s',
                          {'key': key})
                continue
            formatted[key] = value
        return formatted

    def _get_qos(self, options):
        qos = None
        if options.get('qos'):
            qos = utils.parse_qos(options['qos'])
        volume_type = options.get('type')
        if volume_type:
            types = dict((key.lower(), value)
                         for key, value in self.volume_types.items())
            if volume_type.lower() not in types:
                reason = (_('unknown volume type %(type)s, known types: '
                            '%(types)s')
                          % {'type': volume_type,
                             'types': sorted(self.volume_types)})
                raise exception.InvalidInput(reason=reason)
            qos = utils.parse_qos(types[volume_type.lower()])
        return qos

    def _add_to_access_group(self, volume, group):
        group = str(group).strip()
        volume_id = volume['volumeID']
        if group.isdigit():
            self.proxy.access_groups.add_volumes(int(group), [volume_id])
            return
        for item in self.proxy.access_groups.list_all():
            if item.get('name') == group:
                if volume_id not in item.get('volumes', []):
                    self.proxy.access_groups.add_volumes(
                        item['volumeAccessGroupID'], [volume_id])
                return
        group_id = self.proxy.access_groups.create(group,
                                                   volumes=[volume_id])
        LOG.info('Created volume access group %(group)s (%(group_id)s) '
                 'for volume %(volume)s',
                 {'group': group, 'group_id': group_id,
                  'volume': volume['name']})

    def create(self, name, options=None):
        """Create a volume, an existing active volume is returned as is.

        :param name: volume name
        :param options: dict of size, qos, type and vag options, keys are
                        case-insensitive
        :returns: volume dict
        """
        options = self._format_options(options)
        LOG.info('Create volume %(name)s with options %(options)s',
                 {'name': name, 'options': options})
        size = utils.get_volume_size(options.get('size'), self.default_size)
        qos = self._get_qos(options)
        with lockutils.lock('sf-volume-%s' % name):
            volume = self.proxy.volumes.create(name, self.tenant_id, size,
                                               qos=qos)
            if options.get('vag'):
                self._add_to_access_group(volume, options['vag'])
        return volume

    def remove(self, name):
        LOG.info('Remove volume %(name)s', {'name': name})
        with lockutils.lock('sf-volume-%s' % name):
            try:
                volume = self._find(name)
            except exception.VolumeNotFound:
                LOG.info('Volume %(name)s does not exist, nothing to remove',
                         {'name': name})
                return
            try:
                self.connector.disconnect_volume(volume)
            except exception.ISCSIError as error:
                LOG.warning('Failed to detach volume %(name)s before '
                            'delete: %(error)s',
                            {'name': name, 'error': error})
            self.proxy.volumes.delete(volume['volumeID'])

    def path(self, name):
        return posixpath.join(self.mount_point, name)

    def mount(self, name):
        """Attach, format if needed and mount a volume.

        :param name: volume name
        :returns: mount point
        """
        mountpoint = self.path(name)
        with lockutils.lock('sf-volume-%s' % name):
            volume = self._find(name)
            path, device = self.connector.connect_volume(volume)
            LOG.debug('Attached volume %(name)s at %(path)s (%(device)s)',
                      {'name': name, 'path': path, 'device': device})
            if not self.mounter.get_fs_type(device):
                self.mounter.format(device, self.fs_type)
            self.mounter.mount(device, mountpoint, fs_type=self.fs_type)
        return mountpoint

    def unmount(self, name):
        mountpoint = self.path(name)
        with lockutils.lock('sf-volume-%s' % name):
            volume = self._find(name)
            self.connector.disconnect_volume(volume, mountpoint=mountpoint)

    def get(self, name):
        volume = self._find(name)
        return {'name': volume['name'], 'mountpoint': self.path(name)}

    def list(self):
        volumes = self.proxy.volumes.list_for_account(self.tenant_id)
        return [{'name': volume['name'],
                 'mountpoint': self.path(volume['name'])}
                for volume in volumes
                if volume.get('status') == jsonrpc.ACTIVE and
                volume.get('accountID') == self.tenant_id]

    def get_connector(self):
        return {
            'initiator': self.connector.get_initiator(),
            'iface': self.connector.iface,
            'svip': self.connector.svip
        }
