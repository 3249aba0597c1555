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

"""SolidFire driver base exception handling.

Every component raises one of the classes below, never terminates the
process. Remote API errors keep the controller code and name so callers
can classify them.
"""

from oslo_log import log as logging

from sfdriver.i18n import _

LOG = logging.getLogger(__name__)


class SolidFireException(Exception):
    """Base SolidFire driver exception.

    To correctly use this class, inherit from it and define
    a 'message' property. That message will get printf'd
    with the keyword arguments provided to the constructor.
    """

    message = _('An unknown exception occurred.')

    def __init__(self, message=None, **kwargs):
        self.kwargs = kwargs
        self.kwargs['message'] = message

        for key, value in self.kwargs.items():
            if isinstance(value, Exception):
                self.kwargs[key] = str(value)

        if self._should_format():
            try:
                message = self.message % kwargs
            except (KeyError, TypeError, ValueError):
                # kwargs doesn't match a variable in the message
                LOG.exception('Exception in string format operation')
                for name, value in kwargs.items():
                    LOG.error('%(name)s: %(value)s',
                              {'name': name, 'value': value})
                message = self.message
        elif isinstance(message, Exception):
            message = str(message)

        self.msg = message
        super(SolidFireException, self).__init__(message)

    def _should_format(self):
        return self.kwargs['message'] is None or '%(message)' in self.message

    def __str__(self):
        return str(self.msg)


class InvalidInput(SolidFireException):
    message = _('Invalid input received: %(reason)s')


class InvalidConfiguration(SolidFireException):
    message = _('Invalid configuration: %(reason)s')


class EndpointUnset(SolidFireException):
    message = _('SolidFire API endpoint is not set, unable to issue '
                'JSON-RPC request %(method)s')


class SolidFireTransportError(SolidFireException):
    message = _('Failed to complete SolidFire API request %(method)s: '
                '%(reason)s')


class SolidFireAPIException(SolidFireException):
    message = _('SolidFire API request %(method)s failed: %(message)s '
                '(name: %(name)s, code: %(code)s)')

    def __init__(self, message=None, **kwargs):
        kwargs.setdefault('method', 'unknown')
        kwargs.setdefault('name', 'xUnknown')
        kwargs.setdefault('code', 500)
        self.code = kwargs['code']
        self.name = kwargs['name']
        if message is None:
            message = _('Unknown error')
        super(SolidFireAPIException, self).__init__(message, **kwargs)

    def _should_format(self):
        return True


class NotFound(SolidFireException):
    message = _('Resource could not be found.')


class AccountNotFound(NotFound):
    message = _('Account %(account)s could not be found.')


class VolumeNotFound(NotFound):
    message = _('Volume %(volume)s could not be found.')


class AmbiguousVolumeName(SolidFireException):
    message = _('Found %(count)s active volumes named %(volume)s for '
                'account %(account_id)s.')


class ISCSIError(SolidFireException):
    message = _('iSCSI operation failed: %(reason)s')


class ISCSIToolingUnavailable(ISCSIError):
    message = _('Unable to attach, open-iscsi tools not found on host: '
                '%(reason)s')


class ISCSILoginFailed(ISCSIError):
    message = _('iSCSI login to target %(iqn)s on portal %(portal)s failed '
                'at step "%(step)s": %(reason)s')

    def __init__(self, message=None, **kwargs):
        self.step = kwargs.get('step')
        super(ISCSILoginFailed, self).__init__(message, **kwargs)


class ISCSIDiscoveryFailed(ISCSIError):
    message = _('iSCSI SendTargets discovery on portal %(portal)s failed: '
                '%(reason)s')


class ISCSITargetNotFound(ISCSIError):
    message = _('iSCSI target %(iqn)s not reported by portal %(portal)s.')


class ISCSIAttachTimeout(ISCSIError):
    message = _('Device path %(path)s did not appear after %(attempts)s '
                'attempts.')


class ISCSIDeviceNotFound(ISCSIError):
    message = _('Unable to resolve device file for path %(path)s: '
                '%(reason)s')


class ISCSIDetachFailed(ISCSIError):
    message = _('Detach of iSCSI target %(iqn)s completed with errors: '
                '%(reason)s')

    def __init__(self, message=None, **kwargs):
        self.errors = kwargs.pop('errors', [])
        kwargs.setdefault(
            'reason', '; '.join(str(error) for error in self.errors))
        super(ISCSIDetachFailed, self).__init__(message, **kwargs)


class MountFailed(SolidFireException):
    message = _('Failed to %(action)s %(target)s: %(reason)s')
