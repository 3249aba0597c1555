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

import errno

from oslo_concurrency import processutils
from oslo_log import log as logging

from sfdriver import exception
from sfdriver.i18n import _

LOG = logging.getLogger(__name__)

FS_TYPES = {
    'ext4': ('mkfs.ext4', '-F'),
    'xfs': ('mkfs.xfs', '-f')
}

# blkid exit code for a device without a recognized signature
BLKID_NOT_FOUND = 2


class Mounter(object):
    """Format, mount and unmount block devices as root."""

    def __init__(self, root_helper='sudo', execute=processutils.execute):
        self.root_helper = root_helper
        self._execute = execute

    def _run(self, action, target, *cmd, **kwargs):
        kwargs.setdefault('run_as_root', True)
        kwargs.setdefault('root_helper', self.root_helper)
        try:
            return self._execute(*cmd, **kwargs)
        except OSError as error:
            if error.errno == errno.ENOENT:
                reason = (_('command %(command)s is not installed')
                          % {'command': cmd[0]})
                raise exception.MountFailed(action=action, target=target,
                                            reason=reason)
            raise exception.MountFailed(action=action, target=target,
                                        reason=error)
        except processutils.ProcessExecutionError as error:
            LOG.error('Failed to %(action)s %(target)s: %(error)s',
                      {'action': action, 'target': target,
                       'error': error.stderr})
            raise exception.MountFailed(action=action, target=target,
                                        reason=error.stderr or error)

    def get_fs_type(self, device):
        """Return the filesystem type on device or None if unformatted."""
        out, _err = self._run('probe', device, 'blkid', '-o', 'value',
                              '-s', 'TYPE', device,
                              check_exit_code=[0, BLKID_NOT_FOUND])
        fs_type = out.strip()
        LOG.debug('Filesystem type of %(device)s: %(fs_type)s',
                  {'device': device, 'fs_type': fs_type or None})
        return fs_type or None

    def format(self, device, fs_type):
        if fs_type not in FS_TYPES:
            reason = (_('unsupported filesystem type %(fs_type)s')
                      % {'fs_type': fs_type})
            raise exception.InvalidInput(reason=reason)
        command, force = FS_TYPES[fs_type]
        LOG.info('Creating %(fs_type)s filesystem on %(device)s',
                 {'fs_type': fs_type, 'device': device})
        self._run('format', device, command, force, device)

    def read_mounts(self):
        out, _err = self._run('list mounts', 'mount', 'mount',
                              run_as_root=False)
        mounts = {}
        for line in out.splitlines():
            tokens = line.split()
            if len(tokens) > 2 and tokens[1] == 'on':
                mounts[tokens[2]] = tokens[0]
        return mounts

    def mount(self, device, mountpoint, fs_type=None):
        mounts = self.read_mounts()
        if mounts.get(mountpoint) == device:
            LOG.debug('Device %(device)s is already mounted at '
                      '%(mountpoint)s',
                      {'device': device, 'mountpoint': mountpoint})
            return
        self._run('create mount point', mountpoint,
                  'mkdir', '-p', mountpoint)
        command = ['mount']
        if fs_type:
            command += ['-t', fs_type]
        command += [device, mountpoint]
        self._run('mount', mountpoint, *command)
        LOG.info('Mounted %(device)s at %(mountpoint)s',
                 {'device': device, 'mountpoint': mountpoint})

    def unmount(self, mountpoint):
        if mountpoint not in self.read_mounts():
            LOG.debug('Nothing is mounted at %(mountpoint)s',
                      {'mountpoint': mountpoint})
            return
        try:
            self._execute('umount', mountpoint, run_as_root=True,
                          root_helper=self.root_helper)
        except processutils.ProcessExecutionError as error:
            if 'not mounted' in (error.stderr or ''):
                LOG.warning('Mount point %(mountpoint)s is not mounted: '
                            '%(error)s',
                            {'mountpoint': mountpoint,
                             'error': error.stderr})
                return
            raise exception.MountFailed(action='unmount', target=mountpoint,
                                        reason=error.stderr or error)
        except OSError as error:
            raise exception.MountFailed(action='unmount', target=mountpoint,
                                        reason=error)
        LOG.info('Unmounted %(mountpoint)s', {'mountpoint': mountpoint})
