'''
The hierarchical file system interface walked by the backup engine, and
an in-memory implementation of it.

A FAT driver mounted on a LogicalDisk is expected to provide the same
four shapes:

    FileSystem.getRoot() -> Directory
    Directory.iterate() -> Entry, ...   (plus addDirectory/addFile/remove)
    Entry.name / isFile() / isDirectory() / getFile() / getDirectory()
    File.getLength() / read(off, size) / write(off, byts) / flush()
'''
import logging
import collections


logger = logging.getLogger(__name__)


class FileSystemError(Exception):
    pass


class FileExistsException(FileSystemError):
    pass


class FileDoesNotExistException(FileSystemError):
    pass


class ReadOnlyFileSystemError(FileSystemError):
    pass


class FileSystem(object):

    def getRoot(self):
        raise NotImplementedError()

    def isReadOnly(self):
        return False

    def close(self):
        pass


class Directory(object):

    def iterate(self):
        '''
        Yield the Entry objects of this directory, in storage order.
        FAT style '.' and '..' pseudo-entries may be included.
        '''
        raise NotImplementedError()

    def __iter__(self):
        return self.iterate()

    def getEntry(self, name):
        for entry in self.iterate():
            if entry.name == name:
                return entry
        return None

    def addDirectory(self, name):
        raise NotImplementedError()

    def addFile(self, name):
        raise NotImplementedError()

    def remove(self, name):
        raise NotImplementedError()


class Entry(object):

    def __init__(self, name):
        self.name = name

    def isFile(self):
        return False

    def isDirectory(self):
        return False

    def getFile(self):
        raise FileSystemError('%s is not a file' % self.name)

    def getDirectory(self):
        raise FileSystemError('%s is not a directory' % self.name)

    def __repr__(self):
        return '<%s %s>' % (self.__class__.__name__, self.name)


class File(object):

    def getLength(self):
        raise NotImplementedError()

    def read(self, off, size):
        raise NotImplementedError()

    def write(self, off, byts):
        raise NotImplementedError()

    def flush(self):
        pass


class RamFile(File):

    def __init__(self, fs):
        self.fs = fs
        self.buf = bytearray()

    def getLength(self):
        return len(self.buf)

    def read(self, off, size):
        if off < 0 or off + size > len(self.buf):
            raise FileSystemError('read (%d, %d) beyond end of file (%d)' % (off, size, len(self.buf)))
        return bytes(self.buf[off:off + size])

    def write(self, off, byts):
        self.fs._checkWritable()
        if off > len(self.buf):
            self.buf.extend(b'\x00' * (off - len(self.buf)))
        self.buf[off:off + len(byts)] = byts


class RamEntry(Entry):

    def __init__(self, name, file=None, directory=None):
        Entry.__init__(self, name)
        self.file = file
        self.directory = directory

    def isFile(self):
        return self.file is not None

    def isDirectory(self):
        return self.directory is not None

    def getFile(self):
        if self.file is None:
            return Entry.getFile(self)
        return self.file

    def getDirectory(self):
        if self.directory is None:
            return Entry.getDirectory(self)
        return self.directory


class RamDirectory(Directory):

    def __init__(self, fs, parent=None):
        self.fs = fs
        self.parent = parent
        self.entries = collections.OrderedDict()

    def iterate(self):
        if self.parent is not None:
            yield RamEntry('.', directory=self)
            yield RamEntry('..', directory=self.parent)

        for entry in list(self.entries.values()):
            yield entry

    def addDirectory(self, name):
        entry = RamEntry(name, directory=RamDirectory(self.fs, parent=self))
        self._addEntry(entry)
        return entry

    def addFile(self, name):
        entry = RamEntry(name, file=RamFile(self.fs))
        self._addEntry(entry)
        return entry

    def remove(self, name):
        self.fs._checkWritable()
        entry = self.entries.get(name)
        if entry is None:
            raise FileDoesNotExistException(name)

        if entry.isDirectory() and entry.directory.entries:
            raise FileSystemError('directory %s is not empty' % name)

        del self.entries[name]
        logger.debug('removed %s', name)

    def _addEntry(self, entry):
        self.fs._checkWritable()
        if entry.name in ('.', '..') or not entry.name or '/' in entry.name:
            raise FileSystemError('invalid name: %r' % (entry.name,))
        if entry.name in self.entries:
            raise FileExistsException(entry.name)
        self.entries[entry.name] = entry


class RamFileSystem(FileSystem):
    '''
    A file system held entirely in memory.

    Example:

        fs = RamFileSystem()
        root = fs.getRoot()
        root.addDirectory('DCIM').getDirectory().addFile('a.jpg').getFile().write(0, b'...')

    '''
    def __init__(self, readonly=False):
        self.root = RamDirectory(self)
        self.readonly = readonly

    def getRoot(self):
        return self.root

    def isReadOnly(self):
        return self.readonly

    def setReadOnly(self, readonly):
        self.readonly = readonly

    def _checkWritable(self):
        if self.readonly:
            raise ReadOnlyFileSystemError('file system is read-only')
