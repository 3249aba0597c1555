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

"""Configuration, logging and driver start-up for a host service."""

import sys

from oslo_config import cfg
from oslo_log import log as logging

from sfdriver import driver
from sfdriver import options

LOG = logging.getLogger(__name__)

DOMAIN = 'sfdriver'


def prepare_service(argv=None, conf=cfg.CONF):
    """Parse configuration, set up logging and start the driver.

    :param argv: command line arguments, sys.argv by default
    :param conf: oslo.config ConfigOpts to populate
    :returns: initialized SolidFireDriver
    """
    if argv is None:
        argv = sys.argv
    logging.register_options(conf)
    conf.register_opts(options.SOLIDFIRE_OPTS)
    conf(argv[1:], project=DOMAIN, version=driver.SolidFireDriver.VERSION)
    logging.setup(conf, DOMAIN)
    try:
        sf_driver = driver.SolidFireDriver(conf)
        sf_driver.check_for_setup_error()
        sf_driver.do_setup()
    except Exception as error:
        LOG.critical('Failed to initialize %(product_name)s driver: '
                     '%(error)s',
                     {'product_name': driver.SolidFireDriver.product_name,
                      'error': error})
        raise
    return sf_driver
