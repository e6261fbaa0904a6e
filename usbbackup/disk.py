'''
Sector addressed disks with byte addressed read/write.
'''
import os
import logging


logger = logging.getLogger(__name__)


class DeviceError(Exception):
    pass


class DeviceClosedError(DeviceError):
    pass


class ReadOnlyError(DeviceError):
    pass


class InvalidOffsetError(DeviceError, ValueError):
    pass


class DeviceIoError(DeviceError):
    '''
    a sector transfer failed. the whole read/write that issued it failed too.
    '''
    pass


class Disk(object):
    '''
    Base class for a disk made of fixed size sectors.

    Subclasses implement getSectorSize(), getSectorCount(), and the
    whole sector primitives _readSectors() / _writeSectors(). This class
    translates arbitrary byte ranges into sector aligned transfers:

        first = off // sectsize
        count = ceil(((off % sectsize) + size) / sectsize)

    Example:

        disk = RamDisk(1024 * 1024)
        disk.write(100, b'hello')
        disk.read(100, 5)

    '''
    def __init__(self, readonly=False):
        self.closed = False
        self.readonly = readonly

    def getSectorSize(self):
        raise NotImplementedError()

    def getSectorCount(self):
        raise NotImplementedError()

    def _readSectors(self, lba, count):
        raise NotImplementedError()

    def _writeSectors(self, lba, byts):
        raise NotImplementedError()

    def isClosed(self):
        return self.closed

    def isReadOnly(self):
        return self.readonly

    def setReadOnly(self, readonly):
        self.readonly = readonly

    def getSize(self):
        '''
        Size of the disk in bytes.
        '''
        self._checkOpen()
        return self.getSectorCount() * self.getSectorSize()

    def flush(self):
        self._checkOpen()

    def close(self):
        self.closed = True

    def readSectors(self, lba, count):
        '''
        Read `count` whole sectors starting at sector `lba`.
        '''
        self._checkOpen()
        self._checkSectors(lba, count)
        if count == 0:
            return b''
        return self._readSectors(lba, count)

    def writeSectors(self, lba, byts):
        '''
        Write whole sectors starting at sector `lba`.
        '''
        self._checkWritable()
        count, rem = divmod(len(byts), self.getSectorSize())
        if rem:
            raise InvalidOffsetError('write of %d bytes is not sector aligned' % len(byts))

        self._checkSectors(lba, count)
        if count:
            self._writeSectors(lba, byts)

    def read(self, off, size):
        '''
        Read `size` bytes starting at byte offset `off`.
        '''
        self._checkOpen()
        if size == 0:
            return b''

        self._checkRange(off, size)

        sectsize = self.getSectorSize()
        first, head = divmod(off, sectsize)
        count = (head + size + sectsize - 1) // sectsize

        byts = self.readSectors(first, count)
        return bytes(byts[head:head + size])

    def write(self, off, byts):
        '''
        Write `byts` at byte offset `off`.

        Partially covered boundary sectors are read first so the bytes
        around the written range are preserved.
        '''
        self._checkWritable()
        size = len(byts)
        if size == 0:
            return

        self._checkRange(off, size)

        sectsize = self.getSectorSize()
        first, head = divmod(off, sectsize)
        count = (head + size + sectsize - 1) // sectsize
        tail = (head + size) % sectsize

        buf = bytearray(count * sectsize)
        if head:
            buf[:sectsize] = self.readSectors(first, 1)
        if tail and (count > 1 or not head):
            buf[-sectsize:] = self.readSectors(first + count - 1, 1)

        buf[head:head + size] = byts
        self.writeSectors(first, bytes(buf))

    def getLogicalDisk(self, offset, count):
        '''
        Get a view of `count` sectors starting at sector `offset`.
        '''
        return LogicalDisk(self, offset, count)

    def _checkOpen(self):
        if self.closed:
            raise DeviceClosedError('device is closed')

    def _checkWritable(self):
        self._checkOpen()
        if self.readonly:
            raise ReadOnlyError('device is read-only')

    def _checkRange(self, off, size):
        if off < 0 or size < 0 or off + size > self.getSectorCount() * self.getSectorSize():
            raise InvalidOffsetError('range (%d, %d) outside of the device' % (off, size))

    def _checkSectors(self, lba, count):
        if lba < 0 or count < 0 or lba + count > self.getSectorCount():
            raise InvalidOffsetError('sectors (%d, %d) outside of the device' % (lba, count))


class LogicalDisk(Disk):
    '''
    A window of a parent disk. sector N of the view is sector
    (offset + N) of the parent.
    '''
    def __init__(self, parent, offset, count):
        Disk.__init__(self)
        if offset < 0 or count < 0 or offset + count > parent.getSectorCount():
            raise InvalidOffsetError('partition (%d, %d) outside of the device' % (offset, count))

        self.parent = parent
        self.offset = offset
        self.count = count

    def getSectorSize(self):
        return self.parent.getSectorSize()

    def getSectorCount(self):
        return self.count

    def isClosed(self):
        return self.closed or self.parent.isClosed()

    def isReadOnly(self):
        return self.readonly or self.parent.isReadOnly()

    def flush(self):
        self._checkOpen()
        self.parent.flush()

    def _checkOpen(self):
        if self.isClosed():
            raise DeviceClosedError('device is closed')

    def _checkWritable(self):
        self._checkOpen()
        if self.isReadOnly():
            raise ReadOnlyError('device is read-only')

    def _readSectors(self, lba, count):
        return self.parent.readSectors(self.offset + lba, count)

    def _writeSectors(self, lba, byts):
        self.parent.writeSectors(self.offset + lba, byts)


class RamDisk(Disk):
    '''
    A disk held in memory.
    '''
    def __init__(self, size, sectsize=512, readonly=False):
        Disk.__init__(self, readonly=readonly)
        self.sectsize = sectsize
        self.sectors = size // sectsize
        self.buf = bytearray(self.sectors * sectsize)

    @classmethod
    def fromBytes(cls, byts, sectsize=512, readonly=False):
        disk = cls(len(byts), sectsize=sectsize, readonly=readonly)
        disk.buf[:] = byts[:len(disk.buf)]
        return disk

    def getSectorSize(self):
        return self.sectsize

    def getSectorCount(self):
        return self.sectors

    def _readSectors(self, lba, count):
        start = lba * self.sectsize
        return bytes(self.buf[start:start + count * self.sectsize])

    def _writeSectors(self, lba, byts):
        start = lba * self.sectsize
        self.buf[start:start + len(byts)] = byts


class ImageDisk(Disk):
    '''
    A disk backed by a raw image file (for example a dump of a USB stick).
    '''
    def __init__(self, path, sectsize=512, readonly=True):
        Disk.__init__(self, readonly=readonly)
        self.path = path
        self.sectsize = sectsize
        self.sectors = os.path.getsize(path) // sectsize
        self.fd = open(path, 'rb' if readonly else 'r+b')
        logger.debug('image %s: %d sectors of %d bytes', path, self.sectors, sectsize)

    def getSectorSize(self):
        return self.sectsize

    def getSectorCount(self):
        return self.sectors

    def setReadOnly(self, readonly):
        if not readonly and self.readonly:
            self.fd.close()
            self.fd = open(self.path, 'r+b')
        self.readonly = readonly

    def flush(self):
        self._checkOpen()
        self.fd.flush()

    def close(self):
        if not self.closed:
            self.fd.close()
        Disk.close(self)

    def _readSectors(self, lba, count):
        self.fd.seek(lba * self.sectsize)
        byts = self.fd.read(count * self.sectsize)
        if len(byts) != count * self.sectsize:
            raise DeviceIoError('image read (%d, %d) short: %d bytes' % (lba, count, len(byts)))
        return byts

    def _writeSectors(self, lba, byts):
        self.fd.seek(lba * self.sectsize)
        self.fd.write(byts)
