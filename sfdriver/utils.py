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

import posixpath
import re

from oslo_utils import units

from sfdriver import exception
from sfdriver.i18n import _

QOS_KEYS = ('minIOPS', 'maxIOPS', 'burstIOPS')


def str2size(s, scale=1024):
    """Convert size-string.

    String format: <value>[:space:]<B | K | M | ...> to bytes.

    :param s: size-string
    :param scale: base size
    """
    if not s:
        return 0

    if isinstance(s, int):
        return s

    match = re.match(r'^([\.\d]+)\s*([BbKkMmGgTtPpEeZzYy]?)\s*$', s)
    if match is None:
        raise exception.InvalidInput(reason=_('Invalid size value: %(value)s')
                                     % {'value': s})

    groups = match.groups()
    try:
        value = float(groups[0])
    except ValueError:
        raise exception.InvalidInput(reason=_('Invalid size value: %(value)s')
                                     % {'value': s})
    suffix = groups[1].upper() if groups[1] else 'B'

    types = ('B', 'K', 'M', 'G', 'T', 'P', 'E', 'Z', 'Y')
    for i, t in enumerate(types):
        if suffix == t:
            return int(value * pow(scale, i))


def get_volume_size(value, default):
    """Volume size in bytes.

    Bare digits are GiB, anything else is a size-string.

    :param value: size option, may be empty
    :param default: size in GiB used when value is empty
    """
    if not value:
        return default * units.Gi
    value = str(value).strip()
    if value.isdigit():
        return int(value) * units.Gi
    size = str2size(value)
    if size <= 0:
        raise exception.InvalidInput(reason=_('Invalid size value: %(value)s')
                                     % {'value': value})
    return size


def parse_qos(value):
    """Convert 'min,max,burst' (or 'min/max/burst') to a QoS dict."""
    fields = re.split(r'[,/]', str(value))
    if len(fields) != len(QOS_KEYS):
        raise exception.InvalidInput(
            reason=_('QoS must be given as min,max,burst IOPS: %(value)s')
            % {'value': value})
    qos = {}
    for key, field in zip(QOS_KEYS, fields):
        try:
            qos[key] = int(field.strip())
        except ValueError:
            raise exception.InvalidInput(
                reason=_('Invalid %(key)s value: %(value)s')
                % {'key': key, 'value': field})
    if not qos['minIOPS'] <= qos['maxIOPS'] <= qos['burstIOPS']:
        raise exception.InvalidInput(
            reason=_('QoS must satisfy min <= max <= burst: %(value)s')
            % {'value': value})
    return qos


def link2device(link):
    """Convert a /dev/disk/by-path symlink target to a device file.

    '../../sdb' becomes '/dev/sdb', absolute targets are normalized.
    """
    if not link:
        return None
    name = link.strip()
    if name.startswith('/'):
        return posixpath.normpath(name)
    while name.startswith('../'):
        name = name[3:]
    if not name or name.startswith('.'):
        return None
    return posixpath.join('/dev', name)
