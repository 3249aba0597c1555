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
import ipaddress
import os
import re

from eventlet import greenthread
from oslo_concurrency import lockutils
from oslo_concurrency import processutils
from oslo_log import log as logging
from oslo_utils import strutils

from sfdriver import exception
from sfdriver.i18n import _
from sfdriver import utils

LOG = logging.getLogger(__name__)

DEFAULT_ISCSI_PORT = 3260
DEFAULT_LUN = 0
CHAP = 'CHAP'
INITIATOR_FILE = '/etc/iscsi/initiatorname.iscsi'
DEVICE_PATH = '/dev/disk/by-path/ip-%(portal)s-iscsi-%(iqn)s-lun-%(lun)s'
SECRET_KEYS = ('node.session.auth.password',
               'node.session.auth.password_in')

# iscsiadm exit codes
ISCSI_ERR_SESS_EXISTS = 15
ISCSI_ERR_NO_OBJS_FOUND = 21

DETACHED = 'detached'
DISCOVERING = 'discovering'
AUTHENTICATING = 'authenticating'
ATTACHED = 'attached'
DETACHING = 'detaching'

# <ip>:<port>,<tag> <iqn>
DISCOVERY_RECORD = re.compile(r'^(?P<portal>\S+),(?P<tag>\d+)\s+'
                              r'(?P<iqn>(?:iqn|eui|naa)\.\S+)$')


def split_portal(portal, default_port=DEFAULT_ISCSI_PORT):
    """Split an iSCSI portal into address and port.

    Accepts 1.1.1.1, 1.1.1.1:3260, [fe80::1]:3260 and bare IPv6.
    Raises ValueError on a malformed portal.
    """
    portal = portal.strip()
    port = default_port
    if portal.startswith('['):
        address, sep, rest = portal[1:].partition(']')
        if not sep or (rest and not rest.startswith(':')):
            raise ValueError(_('Invalid portal %(portal)s')
                             % {'portal': portal})
        if rest:
            port = rest[1:]
    elif portal.count(':') == 1:
        address, port = portal.split(':')
    else:
        address = portal
    ipaddress.ip_address(address)
    port = int(port)
    if not 0 < port < 65536:
        raise ValueError(_('Invalid portal port %(port)s')
                         % {'port': port})
    return address, port


def _mask_command(command):
    masked = list(command)
    for index, arg in enumerate(masked):
        if arg in SECRET_KEYS and masked[index + 1:index + 2] == ['-v']:
            masked[index + 2:index + 3] = ['***']
    return masked


def _error_reason(error):
    reason = (error.stderr or error.description or '').strip()
    return strutils.mask_password(
        'exit code %(code)s: %(reason)s'
        % {'code': error.exit_code, 'reason': reason})


def parse_discovery(output, iqn, portal):
    """Find the target for iqn in SendTargets discovery output.

    Only lines that carry iqn are parsed, those must be well formed.

    :param output: iscsiadm discovery stdout
    :param iqn: target IQN of the volume
    :param portal: portal the discovery was sent to, for messages
    :returns: ISCSITarget
    """
    for line in output.splitlines():
        line = line.strip()
        if iqn not in line.split():
            continue
        match = DISCOVERY_RECORD.match(line)
        if match is None or match.group('iqn') != iqn:
            reason = (_('malformed discovery record: %(line)s')
                      % {'line': line})
            raise exception.ISCSIDiscoveryFailed(portal=portal,
                                                 reason=reason)
        try:
            address, port = split_portal(match.group('portal'), None)
        except (TypeError, ValueError) as error:
            reason = (_('malformed discovery record %(line)s: %(error)s')
                      % {'line': line, 'error': error})
            raise exception.ISCSIDiscoveryFailed(portal=portal,
                                                 reason=reason)
        return ISCSITarget(address, port, iqn,
                           tag=int(match.group('tag')),
                           discovery=line)
    raise exception.ISCSITargetNotFound(iqn=iqn, portal=portal)


class ISCSITarget(object):
    def __init__(self, ip, port, iqn, lun=DEFAULT_LUN, tag=None,
                 discovery=None):
        self.ip = ip
        self.port = port
        self.iqn = iqn
        self.lun = lun
        self.tag = tag
        self.discovery = discovery

    @property
    def portal(self):
        if ':' in self.ip:
            return '[%s]:%s' % (self.ip, self.port)
        return '%s:%s' % (self.ip, self.port)

    @property
    def path(self):
        return DEVICE_PATH % {'portal': self.portal,
                              'iqn': self.iqn,
                              'lun': self.lun}

    def __repr__(self):
        return ('ISCSITarget(portal=%(portal)s, iqn=%(iqn)s, lun=%(lun)s)'
                % {'portal': self.portal, 'iqn': self.iqn, 'lun': self.lun})


class ISCSIConnector(object):
    """Attach and detach SolidFire volumes over open-iscsi.

    The session state of a volume is never kept in memory, a volume is
    attached while its /dev/disk/by-path link exists:

    .. code-block:: none

        detached -> [discovering] -> authenticating -> attached
        attached -> detaching -> detached
    """

    def __init__(self, conf, proxy, mounter=None,
                 execute=processutils.execute):
        self.proxy = proxy
        self.mounter = mounter
        self._execute = execute
        self.svip = conf.sf_svip
        self.default_port = conf.sf_iscsi_port
        self.iface = conf.sf_initiator_iface
        self.auth_method = conf.sf_iscsi_auth_method
        self.use_discovery = conf.sf_iscsi_discovery
        self.scan_attempts = conf.sf_device_scan_attempts
        self.scan_interval = conf.sf_device_scan_interval
        self.root_helper = conf.sf_root_helper

    def get_target(self, volume):
        if not self.svip:
            reason = _('SVIP is not set, unable to perform iSCSI actions')
            raise exception.InvalidConfiguration(reason=reason)
        iqn = volume.get('iqn')
        if not iqn:
            reason = (_('volume %(volume)s has no IQN')
                      % {'volume': volume.get('name')})
            raise exception.InvalidInput(reason=reason)
        try:
            address, port = split_portal(self.svip, self.default_port)
        except (TypeError, ValueError) as error:
            reason = (_('invalid SVIP %(svip)s: %(error)s')
                      % {'svip': self.svip, 'error': error})
            raise exception.InvalidConfiguration(reason=reason)
        return ISCSITarget(address, port, iqn)

    def get_host_path(self, volume):
        return self.get_target(volume).path

    def get_state(self, volume):
        if os.path.exists(self.get_host_path(volume)):
            return ATTACHED
        return DETACHED

    def get_device_file(self, path):
        try:
            link = os.readlink(path)
        except OSError as error:
            raise exception.ISCSIDeviceNotFound(path=path, reason=error)
        device = utils.link2device(link)
        if not device:
            reason = (_('unexpected link target %(link)s')
                      % {'link': link})
            raise exception.ISCSIDeviceNotFound(path=path, reason=reason)
        return device

    def get_initiator(self):
        try:
            lines, _err = self._execute('cat', INITIATOR_FILE,
                                        run_as_root=True,
                                        root_helper=self.root_helper)
        except (processutils.ProcessExecutionError, OSError) as error:
            LOG.warning('Could not read the iSCSI initiator file '
                        '%(path)s: %(error)s',
                        {'path': INITIATOR_FILE, 'error': error})
            return None
        for line in lines.split('\n'):
            if line.startswith('InitiatorName='):
                return line[line.index('=') + 1:].strip()
        return None

    def connect_volume(self, volume):
        """Attach a volume and return its host path and device file.

        :param volume: volume dict with iqn, name and accountID
        :returns: tuple of by-path link and /dev device file
        """
        target = self.get_target(volume)
        with lockutils.lock('sf-iscsi-%s' % target.iqn):
            return self._connect_volume(volume, target)

    def _connect_volume(self, volume, target):
        device = self._find_device(target.path)
        if device:
            LOG.info('Volume %(volume)s is already attached at %(path)s '
                     '(%(device)s)',
                     {'volume': volume.get('name'), 'path': target.path,
                      'device': device})
            self._set_state(volume, ATTACHED)
            return target.path, device
        self._check_tooling()
        if self.use_discovery:
            self._set_state(volume, DISCOVERING)
            target = self.discover(target)
            LOG.debug('Discovered target %(target)s: %(record)s',
                      {'target': target, 'record': target.discovery})
        credentials = self._get_credentials(volume)
        self._set_state(volume, AUTHENTICATING)
        self._login(target, credentials)
        self._wait_for_path(target.path)
        device = self.get_device_file(target.path)
        self._set_state(volume, ATTACHED)
        LOG.info('Attached volume %(volume)s at %(path)s (%(device)s)',
                 {'volume': volume.get('name'), 'path': target.path,
                  'device': device})
        return target.path, device

    def disconnect_volume(self, volume, mountpoint=None):
        """Unmount, log out and forget the iSCSI node of a volume.

        Every step runs even if an earlier one failed, all failures
        are raised together as ISCSIDetachFailed.

        :param volume: volume dict with iqn and name
        :param mountpoint: optional mount point to unmount first
        """
        target = self.get_target(volume)
        with lockutils.lock('sf-iscsi-%s' % target.iqn):
            self._disconnect_volume(volume, target, mountpoint)

    def _disconnect_volume(self, volume, target, mountpoint):
        errors = []
        self._set_state(volume, DETACHING)
        if mountpoint and not self.mounter:
            LOG.warning('No mount executor configured, %(mountpoint)s of '
                        'volume %(volume)s is not unmounted',
                        {'mountpoint': mountpoint,
                         'volume': volume.get('name')})
        elif mountpoint:
            try:
                self.mounter.unmount(mountpoint)
            except exception.MountFailed as error:
                LOG.warning('Failed to unmount volume %(volume)s from '
                            '%(mountpoint)s: %(error)s',
                            {'volume': volume.get('name'),
                             'mountpoint': mountpoint, 'error': error})
                errors.append(error)
        steps = [
            ('logout', ('--logout',)),
            ('delete node', ('--op', 'delete'))
        ]
        for step, command in steps:
            try:
                self._run_iscsiadm(target, command,
                                   check_exit_code=[0,
                                                    ISCSI_ERR_NO_OBJS_FOUND])
            except processutils.ProcessExecutionError as error:
                LOG.warning('iSCSI %(step)s for target %(iqn)s failed: '
                            '%(error)s',
                            {'step': step, 'iqn': target.iqn,
                             'error': _error_reason(error)})
                errors.append(error)
        self._set_state(volume, DETACHED)
        if errors:
            raise exception.ISCSIDetachFailed(iqn=target.iqn, errors=errors)

    def discover(self, target):
        try:
            out, _err = self._execute('iscsiadm', '-m', 'discovery',
                                      '-t', 'sendtargets',
                                      '-p', target.portal,
                                      run_as_root=True,
                                      root_helper=self.root_helper)
        except processutils.ProcessExecutionError as error:
            LOG.error('SendTargets discovery on %(portal)s failed: '
                      '%(error)s',
                      {'portal': target.portal, 'error': error})
            raise exception.ISCSIDiscoveryFailed(portal=target.portal,
                                                 reason=error)
        LOG.debug('SendTargets discovery on %(portal)s: %(out)s',
                  {'portal': target.portal, 'out': out})
        return parse_discovery(out, target.iqn, target.portal)

    def _find_device(self, path):
        if not os.path.exists(path):
            return None
        try:
            return self.get_device_file(path)
        except exception.ISCSIDeviceNotFound as error:
            LOG.warning('Device path %(path)s vanished during attach '
                        'check: %(error)s',
                        {'path': path, 'error': error})
            return None

    def _check_tooling(self):
        try:
            self._execute('iscsiadm', '--version')
        except OSError as error:
            if error.errno == errno.ENOENT:
                raise exception.ISCSIToolingUnavailable(reason=error.strerror)
            raise exception.ISCSIToolingUnavailable(reason=error)
        except processutils.ProcessExecutionError as error:
            raise exception.ISCSIToolingUnavailable(reason=error)

    def _get_credentials(self, volume):
        if self.auth_method != CHAP:
            return None
        account = self.proxy.accounts.get_by_id(volume['accountID'])
        return account['username'], account['initiatorSecret']

    def _login(self, target, credentials):
        steps = [
            ('create node', ('--interface', self.iface, '--op', 'new'), 0)
        ]
        if credentials:
            username, secret = credentials
            steps += [
                ('set auth method',
                 self._update_args('node.session.auth.authmethod', CHAP), 0),
                ('set auth username',
                 self._update_args('node.session.auth.username', username),
                 0),
                ('set auth password',
                 self._update_args('node.session.auth.password', secret), 0)
            ]
        steps.append(('login', ('--login',), [0, ISCSI_ERR_SESS_EXISTS]))
        for step, command, check_exit_code in steps:
            try:
                self._run_iscsiadm(target, command,
                                   check_exit_code=check_exit_code)
            except processutils.ProcessExecutionError as error:
                LOG.error('iSCSI %(step)s for target %(iqn)s on portal '
                          '%(portal)s failed: %(error)s',
                          {'step': step, 'iqn': target.iqn,
                           'portal': target.portal,
                           'error': _error_reason(error)})
                raise exception.ISCSILoginFailed(
                    iqn=target.iqn, portal=target.portal, step=step,
                    reason=_error_reason(error))

    def _wait_for_path(self, path):
        for attempt in range(1, self.scan_attempts + 1):
            if os.path.exists(path):
                LOG.debug('Device path %(path)s found', {'path': path})
                return
            LOG.debug('Device path %(path)s not found, attempt %(attempt)s '
                      'of %(attempts)s',
                      {'path': path, 'attempt': attempt,
                       'attempts': self.scan_attempts})
            if attempt < self.scan_attempts:
                greenthread.sleep(self.scan_interval)
        raise exception.ISCSIAttachTimeout(path=path,
                                           attempts=self.scan_attempts)

    @staticmethod
    def _update_args(key, value):
        return ('--op', 'update', '-n', key, '-v', value)

    def _run_iscsiadm(self, target, command, **kwargs):
        (out, err) = self._execute('iscsiadm', '-m', 'node',
                                   '-T', target.iqn,
                                   '-p', target.portal,
                                   *command, run_as_root=True,
                                   root_helper=self.root_helper,
                                   **kwargs)
        msg = ('iscsiadm %(command)s: stdout=%(out)s stderr=%(err)s'
               % {'command': ' '.join(_mask_command(command)),
                  'out': out, 'err': err})
        # don't let passwords be shown in log output
        LOG.debug(strutils.mask_password(msg))
        return out, err

    @staticmethod
    def _set_state(volume, state):
        LOG.debug('iSCSI session of volume %(volume)s: %(state)s',
                  {'volume': volume.get('name'), 'state': state})
