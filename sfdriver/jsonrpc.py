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

import json
import random

from oslo_log import log as logging
from oslo_utils import strutils
import requests

from sfdriver import exception
from sfdriver.i18n import _

LOG = logging.getLogger(__name__)

ACTIVE = 'active'
ACCOUNT_NOT_FOUND = ('xUnknownAccount',)
VOLUME_NOT_FOUND = ('xVolumeIDDoesNotExist', 'xVolumeDoesNotExist')
DEFAULT_PAGE_SIZE = 1000
MIN_REQUEST_ID = 1
MAX_REQUEST_ID = 999


class SfRequest(object):
    def __init__(self, proxy, method):
        self.proxy = proxy
        self.method = method

    def __call__(self, params=None):
        if not self.proxy.endpoint:
            LOG.error('Endpoint is not set, unable to issue request '
                      '%(method)s', {'method': self.method})
            raise exception.EndpointUnset(method=self.method)
        if params is None:
            params = {}
        if not isinstance(params, dict):
            message = (_('Request params must be a dictionary: %(params)s')
                       % {'params': params})
            raise exception.InvalidInput(reason=message)
        request_id = random.randint(MIN_REQUEST_ID, MAX_REQUEST_ID)
        payload = {
            'method': self.method,
            'id': request_id,
            'params': params
        }
        LOG.debug('SolidFire request start: %(method)s id %(id)s '
                  'params %(params)s',
                  {'method': self.method, 'id': request_id,
                   'params': strutils.mask_dict_password(params)})
        try:
            response = self.proxy.session.post(self.proxy.endpoint,
                                               data=json.dumps(payload),
                                               timeout=self.proxy.timeout)
        except requests.exceptions.RequestException as error:
            LOG.error('SolidFire request %(method)s id %(id)s failed: '
                      '%(error)s',
                      {'method': self.method, 'id': request_id,
                       'error': error})
            raise exception.SolidFireTransportError(method=self.method,
                                                    reason=error)
        LOG.debug('SolidFire request done: %(method)s id %(id)s, '
                  'status %(code)s, response time: %(time)s seconds, '
                  'response content: %(content)s',
                  {'method': self.method, 'id': request_id,
                   'code': response.status_code,
                   'time': response.elapsed.total_seconds(),
                   'content': strutils.mask_password(response.text)})
        return self.parse(response)

    def parse(self, response):
        try:
            content = json.loads(response.content)
        except (TypeError, ValueError) as error:
            reason = (_('failed to decode JSON response with status '
                        '%(code)s: %(error)s')
                      % {'code': response.status_code, 'error': error})
            raise exception.SolidFireTransportError(method=self.method,
                                                    reason=reason)
        if not isinstance(content, dict):
            reason = (_('invalid JSON response with status %(code)s: '
                        'not a dictionary')
                      % {'code': response.status_code})
            raise exception.SolidFireTransportError(method=self.method,
                                                    reason=reason)
        error = content.get('error')
        if isinstance(error, dict) and error.get('code', 0) != 0:
            raise exception.SolidFireAPIException(error.get('message'),
                                                  method=self.method,
                                                  code=error['code'],
                                                  name=error.get('name'))
        if not response.ok:
            reason = (_('unexpected response status %(code)s: %(reason)s')
                      % {'code': response.status_code,
                         'reason': response.reason})
            raise exception.SolidFireTransportError(method=self.method,
                                                    reason=reason)
        result = content.get('result')
        if result is None:
            return {}
        if not isinstance(result, dict):
            reason = (_('invalid JSON result: not a dictionary: %(result)s')
                      % {'result': result})
            raise exception.SolidFireTransportError(method=self.method,
                                                    reason=reason)
        return result


class SfCollections(object):

    def __init__(self, proxy):
        self.proxy = proxy
        self.subj = 'object'
        self.key = 'objects'

    def items(self, method, params, result):
        items = result.get(self.key)
        if items is None:
            return []
        if not isinstance(items, list):
            reason = (_('invalid %(key)s in result for %(params)s')
                      % {'key': self.key, 'params': params})
            raise exception.SolidFireTransportError(method=method,
                                                    reason=reason)
        LOG.debug('Found %(count)s %(subj)ss for %(params)s',
                  {'count': len(items), 'subj': self.subj,
                   'params': params})
        return items

    def item_id(self, method, result, key):
        value = result.get(key)
        if not isinstance(value, int) or isinstance(value, bool):
            reason = (_('result has no %(key)s: %(result)s')
                      % {'key': key, 'result': result})
            raise exception.SolidFireTransportError(method=method,
                                                    reason=reason)
        return value


class SfAccounts(SfCollections):

    def __init__(self, proxy):
        super(SfAccounts, self).__init__(proxy)
        self.subj = 'account'
        self.key = 'account'

    def account(self, method, result):
        account = result.get(self.key)
        if not isinstance(account, dict) or 'accountID' not in account:
            reason = (_('result has no account: %(result)s')
                      % {'result': strutils.mask_dict_password(result)})
            raise exception.SolidFireTransportError(method=method,
                                                    reason=reason)
        return account

    def get_by_name(self, name):
        LOG.debug('Get %(subj)s by name %(name)s',
                  {'subj': self.subj, 'name': name})
        method = 'GetAccountByName'
        try:
            result = self.proxy.request(method, {'username': name})
        except exception.SolidFireAPIException as error:
            if error.name in ACCOUNT_NOT_FOUND:
                raise exception.AccountNotFound(account=name)
            raise
        return self.account(method, result)

    def get_by_id(self, account_id):
        LOG.debug('Get %(subj)s by ID %(account_id)s',
                  {'subj': self.subj, 'account_id': account_id})
        method = 'GetAccountByID'
        try:
            result = self.proxy.request(method, {'accountID': account_id})
        except exception.SolidFireAPIException as error:
            if error.name in ACCOUNT_NOT_FOUND:
                raise exception.AccountNotFound(account=account_id)
            raise
        return self.account(method, result)

    def add(self, username, initiator_secret=None, target_secret=None):
        LOG.debug('Create %(subj)s %(username)s',
                  {'subj': self.subj, 'username': username})
        method = 'AddAccount'
        params = {'username': username}
        if initiator_secret:
            params['initiatorSecret'] = initiator_secret
        if target_secret:
            params['targetSecret'] = target_secret
        result = self.proxy.request(method, params)
        return self.item_id(method, result, 'accountID')

    def get_or_create(self, name):
        """Return the tenant account, creating it on first use.

        Only an unknown account leads to a create, any other lookup
        failure is raised to the caller.

        :param name: tenant account name
        :returns: account dict
        """
        try:
            return self.get_by_name(name)
        except exception.AccountNotFound:
            LOG.info('Account %(name)s not found, creating it',
                     {'name': name})
        account_id = self.add(name)
        LOG.info('Created account %(name)s with ID %(account_id)s',
                 {'name': name, 'account_id': account_id})
        return self.get_by_id(account_id)


class SfVolumes(SfCollections):

    def __init__(self, proxy):
        super(SfVolumes, self).__init__(proxy)
        self.subj = 'volume'
        self.key = 'volumes'

    def list_for_account(self, account_id):
        method = 'ListVolumesForAccount'
        params = {'accountID': account_id}
        result = self.proxy.request(method, params)
        return self.items(method, params, result)

    def list_active(self, start_id=None, limit=None):
        """Return one page of active volumes.

        A page as long as limit may be truncated, see list_all_active.
        """
        method = 'ListActiveVolumes'
        params = {}
        if start_id is not None:
            params['startVolumeID'] = start_id
        if limit is not None:
            params['limit'] = limit
        result = self.proxy.request(method, params)
        return self.items(method, params, result)

    def list_all_active(self, page_size=DEFAULT_PAGE_SIZE):
        volumes = []
        start_id = 0
        while True:
            page = self.list_active(start_id, page_size)
            volumes += page
            if len(page) < page_size:
                return volumes
            start_id = page[-1]['volumeID'] + 1

    def get_by_id(self, volume_id):
        volumes = self.list_active(volume_id, 1)
        if not volumes or volumes[0].get('volumeID') != volume_id:
            raise exception.VolumeNotFound(volume=volume_id)
        return volumes[0]

    def find_by_name(self, name, account_id):
        """Return the single active volume with this name.

        The controller does not enforce unique names, so the lookup
        rejects more than one active match.

        :param name: volume name
        :param account_id: owning account ID
        :returns: volume dict
        """
        volumes = self.list_for_account(account_id)
        found = [volume for volume in volumes
                 if volume.get('name') == name and
                 volume.get('status') == ACTIVE]
        if not found:
            LOG.debug('No active %(subj)s %(name)s for account '
                      '%(account_id)s',
                      {'subj': self.subj, 'name': name,
                       'account_id': account_id})
            raise exception.VolumeNotFound(volume=name)
        if len(found) > 1:
            LOG.warning('Found %(count)s active volumes named %(name)s for '
                        'account %(account_id)s: %(ids)s',
                        {'count': len(found), 'name': name,
                         'account_id': account_id,
                         'ids': [volume['volumeID'] for volume in found]})
            raise exception.AmbiguousVolumeName(count=len(found),
                                                volume=name,
                                                account_id=account_id)
        return found[0]

    def create(self, name, account_id, size, qos=None, attributes=None):
        """Create a volume unless an active one with this name exists.

        :param name: volume name
        :param account_id: owning account ID
        :param size: volume size in bytes
        :param qos: optional minIOPS/maxIOPS/burstIOPS dict
        :param attributes: optional volume attributes dict
        :returns: volume dict
        """
        try:
            volume = self.find_by_name(name, account_id)
        except exception.VolumeNotFound:
            pass
        else:
            LOG.info('Found existing volume %(name)s with ID %(volume_id)s',
                     {'name': name, 'volume_id': volume['volumeID']})
            return volume
        LOG.debug('Create %(subj)s %(name)s: %(size)s bytes, QoS %(qos)s',
                  {'subj': self.subj, 'name': name, 'size': size,
                   'qos': qos})
        method = 'CreateVolume'
        params = {
            'name': name,
            'accountID': account_id,
            'totalSize': size,
            'enable512e': False
        }
        if qos:
            params['qos'] = qos
        if attributes:
            params['attributes'] = attributes
        result = self.proxy.request(method, params)
        volume_id = self.item_id(method, result, 'volumeID')
        return self.get_by_id(volume_id)

    def delete(self, volume_id):
        LOG.debug('Delete %(subj)s %(volume_id)s',
                  {'subj': self.subj, 'volume_id': volume_id})
        try:
            self.proxy.request('DeleteVolume', {'volumeID': volume_id})
        except exception.SolidFireAPIException as error:
            if error.name not in VOLUME_NOT_FOUND:
                raise
            LOG.info('Volume %(volume_id)s is already absent: %(error)s',
                     {'volume_id': volume_id, 'error': error})


class SfAccessGroups(SfCollections):

    def __init__(self, proxy):
        super(SfAccessGroups, self).__init__(proxy)
        self.subj = 'volume access group'
        self.key = 'volumeAccessGroups'

    def list(self, start_id=None, limit=None):
        method = 'ListVolumeAccessGroups'
        params = {}
        if start_id is not None:
            params['startVolumeAccessGroupID'] = start_id
        if limit is not None:
            params['limit'] = limit
        result = self.proxy.request(method, params)
        return self.items(method, params, result)

    def list_all(self, page_size=DEFAULT_PAGE_SIZE):
        groups = []
        start_id = 0
        while True:
            page = self.list(start_id, page_size)
            groups += page
            if len(page) < page_size:
                return groups
            start_id = page[-1]['volumeAccessGroupID'] + 1

    def create(self, name, volumes=None, initiators=None):
        LOG.debug('Create %(subj)s %(name)s',
                  {'subj': self.subj, 'name': name})
        method = 'CreateVolumeAccessGroup'
        params = {'name': name}
        if volumes:
            params['volumes'] = volumes
        if initiators:
            params['initiators'] = initiators
        result = self.proxy.request(method, params)
        return self.item_id(method, result, 'volumeAccessGroupID')

    def add_volumes(self, group_id, volume_ids):
        LOG.debug('Add volumes %(volume_ids)s to %(subj)s %(group_id)s',
                  {'volume_ids': volume_ids, 'subj': self.subj,
                   'group_id': group_id})
        params = {
            'volumeAccessGroupID': group_id,
            'volumes': volume_ids
        }
        self.proxy.request('AddVolumesToVolumeAccessGroup', params)


class SfProxy(object):
    def __init__(self, conf):
        self.accounts = SfAccounts(self)
        self.volumes = SfVolumes(self)
        self.access_groups = SfAccessGroups(self)
        self.headers = {
            'Content-Type': 'application/json'
        }
        self.endpoint = conf.sf_endpoint
        self.timeout = (conf.sf_rest_connect_timeout,
                        conf.sf_rest_read_timeout)
        self.session = requests.Session()
        self.session.headers.update(self.headers)
        if conf.sf_login:
            self.session.auth = (conf.sf_login, conf.sf_password)
        self.session.verify = conf.sf_ssl_cert_verify
        if self.session.verify and conf.sf_ssl_cert_path:
            self.session.verify = conf.sf_ssl_cert_path
        if not conf.sf_ssl_cert_verify:
            LOG.warning('TLS certificate verification is disabled for the '
                        'SolidFire endpoint, any certificate is trusted')
            requests.packages.urllib3.disable_warnings()

    def __getattr__(self, name):
        if name.startswith('_'):
            raise AttributeError(name)
        return SfRequest(self, name)

    def request(self, method, params=None):
        return SfRequest(self, method)(params)
