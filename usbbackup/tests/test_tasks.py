import os
import tempfile
import unittest
import unittest.mock

import usbbackup.mount as mount
import usbbackup.tasks as tasks

from usbbackup.fs import RamFileSystem
from usbbackup.config import BackupConfig

from usbbackup.tests.common import *


class Recorder(tasks.TaskListener):

    def __init__(self):
        self.events = []

    def onMountReady(self, mnt):
        self.events.append(('mount', mnt))

    def onMountFailed(self, reason):
        self.events.append(('mountfail', reason))

    def onNavigateReady(self, directory):
        self.events.append(('navigate', directory))

    def onCountReady(self, count):
        self.events.append(('count', count))

    def onBackupStart(self):
        self.events.append(('start',))

    def onBackupProgress(self, current):
        self.events.append(('progress', current))

    def onBackupReady(self):
        self.events.append(('ready',))

    def onBackupFailed(self, failed):
        self.events.append(('failed', failed))


class TasksTest(DisTest):

    def test_tasks_mock_device(self):
        rec = Recorder()
        with tasks.TaskRunner(rec) as runner:
            mnt = runner.mount(BackupConfig(debug=True)).result()
            pano = runner.navigate(mnt.fs.getRoot(), '/DCIM/100_PANO').result()
            num = runner.count(pano).result()

        self.eq(num, 155)
        self.eq([ e[0] for e in rec.events ], ['mount', 'navigate', 'count'])
        self.eq(rec.events[2], ('count', 155))

    def test_tasks_mount_failed(self):
        rec = Recorder()
        with unittest.mock.patch('usb.core.find', return_value=iter([])):
            with tasks.TaskRunner(rec) as runner:
                fut = runner.mount(BackupConfig())
                self.assertRaises(mount.MountError, fut.result)

        self.eq(rec.events, [('mountfail', mount.MOUNT_FAILURES.NO_DEVICE)])

    def test_tasks_backup(self):
        fs = RamFileSystem()
        addFile(fs.getRoot(), 'a.jpg', b'a')
        addFile(fs.getRoot(), 'b.jpg', b'b')

        rec = Recorder()
        with tempfile.TemporaryDirectory() as dirn:
            with tasks.TaskRunner(rec) as runner:
                failed = runner.backup(fs.getRoot(), dirn, delete=True).result()

            self.eq(sorted(os.listdir(dirn)), ['a.jpg', 'b.jpg'])

        self.eq(failed, [])
        self.eq(rec.events, [('start',), ('progress', 1), ('progress', 2), ('ready',)])
        self.eq(list(fs.getRoot().entries.keys()), [])

    def test_tasks_backup_error(self):
        rec = Recorder()
        with tasks.TaskRunner(rec) as runner:
            fut = runner.backup(RamFileSystem().getRoot(), '/nonexistent/usbbackup/dest')
            self.assertRaises(Exception, fut.result)

        self.eq(rec.events, [('start',), ('failed', None)])
