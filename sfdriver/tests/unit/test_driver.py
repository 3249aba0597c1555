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

import threading
from unittest import mock

from oslo_utils import units
from oslotest import base

from sfdriver import driver
from sfdriver import exception
from sfdriver import iscsi
from sfdriver import jsonrpc
from sfdriver import mount
from sfdriver.tests.unit import fakes

MOUNT_POINT = '/var/lib/solidfire/mount'
HOST_PATH = '/dev/disk/by-path/ip-10.10.10.11:3260-iscsi-%s-lun-0' % (
    fakes.IQN)


class TestSolidFireDriver(base.BaseTestCase):

    def setUp(self):
        super(TestSolidFireDriver, self).setUp()
        self.cfg = fakes.fake_configuration(
            sf_volume_types={'Gold': '1000/5000/10000'})
        self.proxy = mock.Mock()
        self.connector = mock.Mock()
        self.mounter = mock.Mock()
        self.volume = fakes.fake_volume()
        self.proxy.volumes.find_by_name.return_value = self.volume
        self.proxy.volumes.create.return_value = self.volume
        self.drv = driver.SolidFireDriver(self.cfg, proxy=self.proxy,
                                          connector=self.connector,
                                          mounter=self.mounter)
        self.drv.tenant_id = fakes.TENANT_ID

    def test___init__(self):
        drv = driver.SolidFireDriver(self.cfg)
        self.assertIsInstance(drv.proxy, jsonrpc.SfProxy)
        self.assertIsInstance(drv.mounter, mount.Mounter)
        self.assertIsInstance(drv.connector, iscsi.ISCSIConnector)
        self.assertIs(drv.mounter, drv.connector.mounter)
        self.assertIs(drv.proxy, drv.connector.proxy)

    def test___init___no_configuration(self):
        self.assertRaises(exception.InvalidConfiguration,
                          driver.SolidFireDriver, None)

    @mock.patch('os.makedirs')
    @mock.patch('os.path.isdir')
    def test_do_setup(self, isdir, makedirs):
        isdir.return_value = False
        self.proxy.accounts.get_or_create.return_value = (
            fakes.fake_account(account_id=11))
        self.drv.do_setup()
        self.proxy.accounts.get_or_create.assert_called_once_with('docker')
        makedirs.assert_called_once_with(MOUNT_POINT, 0o755)
        self.assertEqual(11, self.drv.tenant_id)

    @mock.patch('os.makedirs')
    @mock.patch('os.path.isdir')
    def test_do_setup_existing_mount_point(self, isdir, makedirs):
        isdir.return_value = True
        self.proxy.accounts.get_or_create.return_value = (
            fakes.fake_account())
        self.drv.do_setup()
        makedirs.assert_not_called()

    def test_do_setup_error(self):
        self.proxy.accounts.get_or_create.side_effect = (
            exception.SolidFireTransportError(method='GetAccountByName',
                                              reason='refused'))
        self.assertRaises(exception.SolidFireTransportError,
                          self.drv.do_setup)

    def test_check_for_setup_error(self):
        self.assertIsNone(self.drv.check_for_setup_error())

    def test_check_for_setup_error_unset(self):
        for name in ('sf_endpoint', 'sf_svip', 'sf_tenant_name'):
            cfg = fakes.fake_configuration(**{name: ''})
            drv = driver.SolidFireDriver(cfg, proxy=self.proxy,
                                         connector=self.connector,
                                         mounter=self.mounter)
            self.assertRaises(exception.InvalidConfiguration,
                              drv.check_for_setup_error)

    def test_check_for_setup_error_default_size(self):
        cfg = fakes.fake_configuration(sf_default_volume_size=0)
        drv = driver.SolidFireDriver(cfg, proxy=self.proxy,
                                     connector=self.connector,
                                     mounter=self.mounter)
        self.assertRaises(exception.InvalidConfiguration,
                          drv.check_for_setup_error)

    def test_check_for_setup_error_volume_type(self):
        cfg = fakes.fake_configuration(sf_volume_types={'bad': '100'})
        drv = driver.SolidFireDriver(cfg, proxy=self.proxy,
                                     connector=self.connector,
                                     mounter=self.mounter)
        self.assertRaises(exception.InvalidConfiguration,
                          drv.check_for_setup_error)

    def test_create(self):
        result = self.drv.create('volume-1', {'Size': '10',
                                              'QOS': '100,200,300'})
        self.assertEqual(self.volume, result)
        self.proxy.volumes.create.assert_called_once_with(
            'volume-1', fakes.TENANT_ID, 10 * units.Gi,
            qos={'minIOPS': 100, 'maxIOPS': 200, 'burstIOPS': 300})
        self.proxy.access_groups.add_volumes.assert_not_called()

    def test_create_defaults(self):
        self.drv.create('volume-1')
        self.proxy.volumes.create.assert_called_once_with(
            'volume-1', fakes.TENANT_ID, units.Gi, qos=None)

    def test_create_size_string(self):
        self.drv.create('volume-1', {'size': '512M', 'unknown': 'value'})
        self.proxy.volumes.create.assert_called_once_with(
            'volume-1', fakes.TENANT_ID, 512 * units.Mi, qos=None)

    def test_create_type(self):
        self.drv.create('volume-1', {'Type': 'gold'})
        self.proxy.volumes.create.assert_called_once_with(
            'volume-1', fakes.TENANT_ID, units.Gi,
            qos={'minIOPS': 1000, 'maxIOPS': 5000, 'burstIOPS': 10000})

    def test_create_unknown_type(self):
        self.assertRaises(exception.InvalidInput, self.drv.create,
                          'volume-1', {'type': 'silver'})
        self.proxy.volumes.create.assert_not_called()

    def test_create_invalid_size(self):
        for size in ('big', '1.2.3', '.', '1..5G', '10X'):
            self.assertRaises(exception.InvalidInput, self.drv.create,
                              'volume-1', {'Size': size})
        self.proxy.volumes.create.assert_not_called()

    def test_create_vag_id(self):
        self.drv.create('volume-1', {'VAG': '3'})
        self.proxy.access_groups.add_volumes.assert_called_once_with(
            3, [12])

    def test_create_vag_name(self):
        self.proxy.access_groups.list_all.return_value = [
            {'volumeAccessGroupID': 2, 'name': 'other', 'volumes': []},
            {'volumeAccessGroupID': 4, 'name': 'docker', 'volumes': []}
        ]
        self.drv.create('volume-1', {'vag': 'docker'})
        self.proxy.access_groups.add_volumes.assert_called_once_with(
            4, [12])
        self.proxy.access_groups.create.assert_not_called()

    def test_create_vag_member(self):
        self.proxy.access_groups.list_all.return_value = [
            {'volumeAccessGroupID': 4, 'name': 'docker', 'volumes': [12]}
        ]
        self.drv.create('volume-1', {'vag': 'docker'})
        self.proxy.access_groups.add_volumes.assert_not_called()

    def test_create_vag_new(self):
        self.proxy.access_groups.list_all.return_value = []
        self.proxy.access_groups.create.return_value = 5
        self.drv.create('volume-1', {'vag': 'docker'})
        self.proxy.access_groups.create.assert_called_once_with(
            'docker', volumes=[12])

    def test_remove(self):
        self.drv.remove('volume-1')
        self.proxy.volumes.find_by_name.assert_called_once_with(
            'volume-1', fakes.TENANT_ID)
        self.connector.disconnect_volume.assert_called_once_with(
            self.volume)
        self.proxy.volumes.delete.assert_called_once_with(12)

    def test_remove_missing(self):
        self.proxy.volumes.find_by_name.side_effect = (
            exception.VolumeNotFound(volume='volume-1'))
        self.assertIsNone(self.drv.remove('volume-1'))
        self.connector.disconnect_volume.assert_not_called()
        self.proxy.volumes.delete.assert_not_called()

    def test_remove_detach_failed(self):
        self.connector.disconnect_volume.side_effect = (
            exception.ISCSIDetachFailed(iqn=fakes.IQN,
                                        errors=['logout failed']))
        self.drv.remove('volume-1')
        self.proxy.volumes.delete.assert_called_once_with(12)

    def test_remove_ambiguous(self):
        self.proxy.volumes.find_by_name.side_effect = (
            exception.AmbiguousVolumeName(count=2, volume='volume-1',
                                          account_id=fakes.TENANT_ID))
        self.assertRaises(exception.AmbiguousVolumeName,
                          self.drv.remove, 'volume-1')
        self.proxy.volumes.delete.assert_not_called()

    def test_path(self):
        self.assertEqual(MOUNT_POINT + '/volume-1',
                         self.drv.path('volume-1'))

    def test_mount(self):
        self.connector.connect_volume.return_value = (HOST_PATH, '/dev/sdb')
        self.mounter.get_fs_type.return_value = None
        result = self.drv.mount('volume-1')
        self.assertEqual(MOUNT_POINT + '/volume-1', result)
        self.connector.connect_volume.assert_called_once_with(self.volume)
        self.mounter.format.assert_called_once_with('/dev/sdb', 'ext4')
        self.mounter.mount.assert_called_once_with(
            '/dev/sdb', MOUNT_POINT + '/volume-1', fs_type='ext4')

    def test_mount_formatted(self):
        self.connector.connect_volume.return_value = (HOST_PATH, '/dev/sdb')
        self.mounter.get_fs_type.return_value = 'xfs'
        self.drv.mount('volume-1')
        self.mounter.format.assert_not_called()
        self.mounter.mount.assert_called_once_with(
            '/dev/sdb', MOUNT_POINT + '/volume-1', fs_type='ext4')

    def test_mount_missing(self):
        self.proxy.volumes.find_by_name.side_effect = (
            exception.VolumeNotFound(volume='volume-1'))
        self.assertRaises(exception.VolumeNotFound,
                          self.drv.mount, 'volume-1')
        self.connector.connect_volume.assert_not_called()

    def test_mount_attach_failed(self):
        self.connector.connect_volume.side_effect = (
            exception.ISCSIAttachTimeout(path=HOST_PATH, attempts=5))
        self.assertRaises(exception.ISCSIAttachTimeout,
                          self.drv.mount, 'volume-1')
        self.mounter.mount.assert_not_called()

    def test_unmount(self):
        self.drv.unmount('volume-1')
        self.connector.disconnect_volume.assert_called_once_with(
            self.volume, mountpoint=MOUNT_POINT + '/volume-1')

    def test_get(self):
        self.assertEqual({'name': 'volume-1',
                          'mountpoint': MOUNT_POINT + '/volume-1'},
                         self.drv.get('volume-1'))

    def test_get_missing(self):
        self.proxy.volumes.find_by_name.side_effect = (
            exception.VolumeNotFound(volume='volume-1'))
        self.assertRaises(exception.VolumeNotFound,
                          self.drv.get, 'volume-1')

    def test_list(self):
        self.proxy.volumes.list_for_account.return_value = [
            fakes.fake_volume(),
            fakes.fake_volume(volume_id=13, name='volume-2',
                              status='deleted'),
            fakes.fake_volume(volume_id=14, name='volume-3',
                              account_id=99)
        ]
        result = self.drv.list()
        self.proxy.volumes.list_for_account.assert_called_once_with(
            fakes.TENANT_ID)
        self.assertEqual([{'name': 'volume-1',
                           'mountpoint': MOUNT_POINT + '/volume-1'}],
                         result)

    def test_get_connector(self):
        self.connector.get_initiator.return_value = 'iqn.1993-08.org:host'
        self.connector.iface = 'default'
        self.connector.svip = fakes.SVIP
        self.assertEqual({'initiator': 'iqn.1993-08.org:host',
                          'iface': 'default',
                          'svip': fakes.SVIP},
                         self.drv.get_connector())

    @mock.patch('oslo_concurrency.lockutils.lock')
    def test_volume_locks(self, lock):
        self.connector.connect_volume.return_value = (HOST_PATH, '/dev/sdb')
        self.drv.create('volume-1')
        self.drv.mount('volume-1')
        self.drv.unmount('volume-1')
        self.drv.remove('volume-1')
        self.assertEqual([mock.call('sf-volume-volume-1')] * 4,
                         lock.call_args_list)

    @mock.patch('oslo_concurrency.lockutils.lock')
    def test_volume_lock_per_name(self, lock):
        self.drv.create('volume-1')
        self.drv.create('volume-2')
        lock.assert_has_calls([mock.call('sf-volume-volume-1'),
                               mock.call('sf-volume-volume-2')],
                              any_order=True)

    def test_create_same_name_serialized(self):
        entered = []
        first_in = threading.Event()
        release = threading.Event()

        def create(name, *args, **kwargs):
            entered.append(name)
            if len(entered) == 1:
                first_in.set()
                release.wait(5)
            return self.volume

        self.proxy.volumes.create.side_effect = create
        first = threading.Thread(target=self.drv.create, args=('volume-1',))
        second = threading.Thread(target=self.drv.create, args=('volume-1',))
        first.start()
        self.assertTrue(first_in.wait(5))
        second.start()
        second.join(0.2)
        self.assertTrue(second.is_alive())
        self.assertEqual(['volume-1'], entered)
        release.set()
        first.join(5)
        second.join(5)
        self.assertEqual(['volume-1', 'volume-1'], entered)

    def test_create_different_names_parallel(self):
        barrier = threading.Barrier(2, timeout=5)

        def create(name, *args, **kwargs):
            barrier.wait()
            return self.volume

        self.proxy.volumes.create.side_effect = create
        threads = [threading.Thread(target=self.drv.create, args=(name,))
                   for name in ('volume-1', 'volume-2')]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join(10)
        self.assertFalse(barrier.broken)
        self.assertEqual(2, self.proxy.volumes.create.call_count)
