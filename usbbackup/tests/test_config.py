import os
import argparse
import tempfile
import unittest

import usbbackup.config as config
import usbbackup.tools.backup as t_backup

from usbbackup.tests.common import *

SETTINGS = '''
[usbbackup]
source = /DCIM
dest = /tmp/photos
delete = yes
extensions = jpg, .MP4,
lun = 1
'''


class ConfigTest(DisTest):

    def test_config_defaults(self):
        conf = config.BackupConfig()
        self.eq(conf.source, '/')
        self.assertIsNone(conf.dest)
        self.false(conf.delete)
        self.false(conf.overwrite)
        self.false(conf.debug)
        self.eq(conf.lun, 0)

    def test_config_load(self):
        with tempfile.TemporaryDirectory() as dirn:
            path = os.path.join(dirn, 'usbbackup.ini')
            with open(path, 'w') as fd:
                fd.write(SETTINGS)

            conf = config.loadConfig(path)

        self.eq(conf.source, '/DCIM')
        self.eq(conf.dest, '/tmp/photos')
        self.true(conf.delete)
        self.false(conf.overwrite)
        self.eq(conf.extensions, ('jpg', '.MP4'))
        self.eq(conf.lun, 1)

    def test_config_missing(self):
        with tempfile.TemporaryDirectory() as dirn:
            conf = config.loadConfig(os.path.join(dirn, 'nope.ini'))
        self.eq(conf, config.BackupConfig())

    def test_config_merge(self):
        conf = config.BackupConfig(source='/DCIM', dest='/tmp/a')
        args = argparse.Namespace(source=None, dest='/tmp/b', lun=None,
                                  delete=None, overwrite=True, debug=None, ext=['jpg'])

        conf = config.mergeArgs(conf, args)
        self.eq(conf.source, '/DCIM')
        self.eq(conf.dest, '/tmp/b')
        self.true(conf.overwrite)
        self.false(conf.delete)
        self.eq(conf.extensions, ('jpg',))

    def test_config_flags_turn_off(self):
        conf = config.BackupConfig(delete=True, overwrite=True)
        parser = t_backup.makeParser()

        args = parser.parse_args([])
        self.eq(config.mergeArgs(conf, args), conf)

        args = parser.parse_args(['--no-delete', '--no-overwrite'])
        merged = config.mergeArgs(conf, args)
        self.false(merged.delete)
        self.false(merged.overwrite)

        args = parser.parse_args(['--delete'])
        self.true(config.mergeArgs(config.BackupConfig(), args).delete)
