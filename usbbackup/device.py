'''
Block device over a USB mass-storage logical unit.
'''
import logging

import usbbackup.protos.bot as bot
import usbbackup.formats.mbr as mbr

from usbbackup.disk import Disk, DeviceError, DeviceIoError


logger = logging.getLogger(__name__)


# largest single READ(10)/WRITE(10) transfer, in bytes
DEFAULT_CHUNK_SIZE = 0x4000


class BlockDevice(Disk):
    '''
    Sector addressed access to a USB stick, chunked into transfers of at
    most `chunksize` bytes.

    Constructed closed and read-only. init() queries the capacity and
    locates the FAT partition.

    Example:

        dev = BlockDevice(MassStorage(trans))
        dev.init()

        part = dev.getPartition()
        disk = dev.getPartitionDisk()

    Notes:

        * any failed chunk fails the whole read/write with DeviceIoError.

    '''
    def __init__(self, storage, chunksize=DEFAULT_CHUNK_SIZE):
        Disk.__init__(self, readonly=True)
        self.closed = True
        self.storage = storage
        self.chunksize = chunksize
        self.partition = None

    def init(self):
        '''
        Query capacity and classify the boot sector, then open the device.

        Raises TransportError if the capacity query fails and
        PartitionIoError if the boot sector cannot be read.
        '''
        self.storage.readCapacity()
        if self.chunksize < self.getSectorSize():
            raise DeviceError('chunk size %d smaller than a sector (%d)' % (self.chunksize, self.getSectorSize()))

        self.closed = False
        try:
            logger.info('initializing disk, reading boot sector...')
            self.partition = mbr.locatePartition(self)
        except Exception:
            self.closed = True
            raise

        return self.partition

    def getSectorSize(self):
        return self.storage.getSectorSize()

    def getSectorCount(self):
        return self.storage.getSectorCount()

    def getPartition(self):
        self._checkOpen()
        return self.partition

    def getFatType(self):
        return self.getPartition().fattype

    def getPartitionDisk(self):
        '''
        Get the LogicalDisk view of the located partition.
        '''
        part = self.getPartition()
        return self.getLogicalDisk(part.offset, part.count)

    def close(self):
        '''
        Close the device and release the USB interface under it.
        '''
        logger.debug('closing block device')
        Disk.close(self)
        self.storage.close()

    def _chunks(self, lba, count):
        step = self.chunksize // self.getSectorSize()
        done = 0
        while done < count:
            num = min(step, count - done)
            yield done, lba + done, num
            done += num

    def _readSectors(self, lba, count):
        logger.debug('reading %d sector(s) @ position #%d', count, lba)
        sectsize = self.getSectorSize()
        buf = bytearray(count * sectsize)
        for done, cur, num in self._chunks(lba, count):
            try:
                byts = self.storage.readBlocks(cur, num)
            except bot.TransportError as e:
                logger.error('read failed at chunk (%d, %d): %s', cur, num, e)
                raise DeviceIoError('read of %d sector(s) @ %d failed at sector %d' % (count, lba, cur)) from e

            buf[done * sectsize:(done + num) * sectsize] = byts

        return bytes(buf)

    def _writeSectors(self, lba, byts):
        sectsize = self.getSectorSize()
        count = len(byts) // sectsize
        logger.debug('writing %d sector(s) @ position #%d', count, lba)
        for done, cur, num in self._chunks(lba, count):
            try:
                self.storage.writeBlocks(cur, byts[done * sectsize:(done + num) * sectsize])
            except bot.TransportError as e:
                logger.error('write failed at chunk (%d, %d): %s', cur, num, e)
                raise DeviceIoError('write of %d sector(s) @ %d failed at sector %d' % (count, lba, cur)) from e
