'''
Copy, delete and count files over a walked file system tree.
'''
import os
import logging
import posixpath
import collections

import usbbackup.protos.bot as bot

from usbbackup.fs import FileSystemError
from usbbackup.disk import DeviceError
from usbbackup.walk import Visitor, walk


logger = logging.getLogger(__name__)


class BackupError(Exception):
    '''
    the backup could not run (or was aborted by a directory level failure).
    '''
    pass


class CopyError(Exception):
    '''
    a single file could not be copied. recorded, then the walk goes on.
    '''
    def __init__(self, name, msg):
        Exception.__init__(self, '%s: %s' % (name, msg))
        self.name = name


# errors that fail a single file copy
COPY_ERRORS = (OSError, FileSystemError, DeviceError, bot.TransportError)

# suffix of a copy still being written
PARTIAL_SUFFIX = '.partial'


BackupFrame = collections.namedtuple('BackupFrame', ('path', 'pending'))
BackupFrame.__doc__ = '''
Destination marker of the backup walk: the local directory mirroring the
source directory and the names copied out of it, waiting for deletion
(None when delete-after-backup is off).
'''


class BackupVisitor(Visitor):
    '''
    Mirror the source tree into a local directory.

    Each directory owns the list of its successfully copied files. The
    list rides along with the destination marker and is only applied
    (deleted from the source) once the walk leaves that directory.
    '''
    def __init__(self, delete=False, overwrite=False, progress=None):
        self.delete = delete
        self.overwrite = overwrite
        self.progress = progress

        self.failed = []
        self.current = 0

    def getFrame(self, path):
        return BackupFrame(path, [] if self.delete else None)

    def onFile(self, entry, frame):
        self.current += 1
        if self.progress is not None:
            self.progress(self.current)

        try:
            self.copyFile(entry, os.path.join(frame.path, entry.name))

        except CopyError as e:
            logger.error('backup of %s failed: %s', entry.name, e)
            self.failed.append(entry.name)
            return

        if frame.pending is not None:
            frame.pending.append(entry.name)

    def onEnterDirectory(self, entry, frame):
        path = os.path.join(frame.path, entry.name)
        if not os.path.isdir(path):
            os.makedirs(path)
        return self.getFrame(path)

    def onExitDirectory(self, entry, frame):
        self.deletePending(entry.getDirectory(), frame)

    def deletePending(self, srcdir, frame):
        '''
        Remove the copied files of a finished directory from the source.
        '''
        if not frame.pending:
            return

        for name in frame.pending:
            logger.debug('deleting %s from the source', name)
            srcdir.remove(name)

        del frame.pending[:]

    def copyFile(self, entry, path):
        '''
        Copy a file entry to the local `path` with a single whole-file
        read and write. Returns False if an existing file was kept.

        The bytes land in a temporary file next to `path` which only
        replaces `path` once completely written.
        '''
        if os.path.lexists(path) and not os.path.isfile(path):
            raise CopyError(entry.name, '%s exists and is not a regular file' % path)

        if os.path.isfile(path) and not self.overwrite:
            logger.debug('%s exists, skipping', path)
            return False

        tmppath = path + PARTIAL_SUFFIX
        try:
            srcfile = entry.getFile()
            byts = srcfile.read(0, srcfile.getLength())
            with open(tmppath, 'wb') as fd:
                fd.write(byts)

            os.replace(tmppath, path)

        except COPY_ERRORS as e:
            self._unlink(tmppath)
            raise CopyError(entry.name, str(e)) from e

        return True

    def _unlink(self, path):
        try:
            if os.path.lexists(path):
                os.unlink(path)
        except OSError as e:
            logger.warning('could not remove partial copy %s: %s', path, e)


def backup(srcdir, destpath, delete=False, overwrite=False, progress=None):
    '''
    Copy every file below `srcdir` into the local directory `destpath`.

    Returns the list of names that failed to copy (empty on success).
    `progress` is called with an increasing count before each file.

    Example:

        failed = backup(root, '/tmp/photos', delete=True)
        if failed:
            print('could not copy: %s' % ', '.join(failed))

    '''
    if not os.path.isdir(destpath):
        raise BackupError('destination %s does not exist or is not a directory' % destpath)

    logger.info('backup %s -> %s (delete=%s overwrite=%s)', srcdir, destpath, delete, overwrite)

    visitor = BackupVisitor(delete=delete, overwrite=overwrite, progress=progress)
    root = visitor.getFrame(destpath)

    walk(srcdir, root, visitor)
    visitor.deletePending(srcdir, root)

    logger.info('backup complete: %d file(s), %d failed', visitor.current, len(visitor.failed))
    return visitor.failed


def normalizeExtensions(extensions):
    if not extensions:
        return None
    return frozenset([ e.lower().lstrip('.') for e in extensions ])


class CountVisitor(Visitor):
    '''
    Count (and list) files, optionally only those whose extension is in
    an allow-list. Matching is case-insensitive.
    '''
    def __init__(self, extensions=None, base='/'):
        self.extensions = normalizeExtensions(extensions)
        self.base = base

        self.count = 0
        self.paths = []
        self.parts = []

    def matches(self, name):
        if self.extensions is None:
            return True
        ext = posixpath.splitext(name)[1]
        return ext.lower().lstrip('.') in self.extensions

    def onFile(self, entry, dest):
        if not self.matches(entry.name):
            return

        self.count += 1
        self.paths.append(posixpath.join(self.base, *(self.parts + [entry.name])))

    def onEnterDirectory(self, entry, dest):
        self.parts.append(entry.name)
        return dest

    def onExitDirectory(self, entry, dest):
        self.parts.pop()


def count(srcdir, extensions=None):
    '''
    Count the files below `srcdir`.
    '''
    visitor = CountVisitor(extensions=extensions)
    walk(srcdir, '', visitor)
    logger.debug('counted %d file(s)', visitor.count)
    return visitor.count


def listFiles(srcdir, extensions=None, base='/'):
    '''
    List the logical paths of the files below `srcdir`.

    Example:

        for path in listFiles(root, extensions=['jpg']):
            print(path)

    '''
    visitor = CountVisitor(extensions=extensions, base=base)
    walk(srcdir, '', visitor)
    return visitor.paths


def navigate(rootdir, path):
    '''
    Resolve a '/' separated logical path to a directory handle.

    Returns None if a component is missing or is not a directory.
    '''
    curdir = rootdir
    for name in path.split('/'):
        if not name or name == '.':
            continue

        entry = curdir.getEntry(name)
        if entry is None or not entry.isDirectory():
            logger.debug('navigate: %s not found in %s', name, path)
            return None

        curdir = entry.getDirectory()

    return curdir
