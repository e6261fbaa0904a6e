'''
Run mount / navigate / count / backup operations on one background worker.

Only one operation touches the device at a time: they are queued on a
single worker thread and run in submission order.
'''
import logging
import concurrent.futures

import usbbackup.mount as mount
import usbbackup.backup as backup


logger = logging.getLogger(__name__)


class TaskListener(object):
    '''
    Receives operation results. Callbacks fire on the worker thread.
    '''
    def onMountReady(self, mnt):
        pass

    def onMountFailed(self, reason):
        pass

    def onNavigateReady(self, directory):
        pass

    def onCountReady(self, count):
        pass

    def onBackupStart(self):
        pass

    def onBackupProgress(self, current):
        pass

    def onBackupReady(self):
        pass

    def onBackupFailed(self, failed):
        pass


class TaskRunner(object):
    '''
    Example:

        runner = TaskRunner(listener)
        runner.mount(conf, fsfactory=fat.open)
        runner.count(root)
        runner.shutdown()

    '''
    def __init__(self, listener=None):
        if listener is None:
            listener = TaskListener()

        self.listener = listener
        self.pool = concurrent.futures.ThreadPoolExecutor(max_workers=1)

    def submit(self, func, *args, **kwargs):
        return self.pool.submit(func, *args, **kwargs)

    def shutdown(self, wait=True):
        self.pool.shutdown(wait=wait)

    def __enter__(self):
        return self

    def __exit__(self, exctype, exc, tb):
        self.shutdown()

    def mount(self, conf, fsfactory=None):
        return self.submit(self._runMount, conf, fsfactory)

    def navigate(self, rootdir, path):
        return self.submit(self._runNavigate, rootdir, path)

    def count(self, srcdir, extensions=None):
        return self.submit(self._runCount, srcdir, extensions)

    def backup(self, srcdir, destpath, delete=False, overwrite=False):
        return self.submit(self._runBackup, srcdir, destpath, delete, overwrite)

    def _runMount(self, conf, fsfactory):
        try:
            mnt = mount.mount(conf, fsfactory=fsfactory)
        except mount.MountError as e:
            logger.error('mount failed: %s', e)
            self.listener.onMountFailed(e.reason)
            raise

        self.listener.onMountReady(mnt)
        return mnt

    def _runNavigate(self, rootdir, path):
        directory = backup.navigate(rootdir, path)
        self.listener.onNavigateReady(directory)
        return directory

    def _runCount(self, srcdir, extensions):
        num = backup.count(srcdir, extensions=extensions)
        self.listener.onCountReady(num)
        return num

    def _runBackup(self, srcdir, destpath, delete, overwrite):
        self.listener.onBackupStart()
        try:
            failed = backup.backup(srcdir, destpath, delete=delete, overwrite=overwrite,
                                   progress=self.listener.onBackupProgress)
        except Exception as e:
            logger.error('backup failed: %s', e)
            self.listener.onBackupFailed(None)
            raise

        if failed:
            self.listener.onBackupFailed(failed)
        else:
            self.listener.onBackupReady()
        return failed
