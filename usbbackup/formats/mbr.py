'''
Structures and helpers for locating the FAT volume on a disk.

A disk is either a "superfloppy" (the FAT boot sector lives at sector 0
and there is no partition table) or carries an MS-DOS style MBR whose
first recognized FAT partition is used.
'''
import re
import logging
import collections

import vstruct2.types as v_types

import usbbackup.protos.bot as bot

from usbbackup.disk import DeviceError
from usbbackup.disklab import DiskLab


logger = logging.getLogger(__name__)


MBR_PARTITION_COUNT = 4


# partition types a FAT volume may be declared with
SYSTEMID = v_types.venum()
SYSTEMID.EMPTY           = 0x00
SYSTEMID.FAT_12          = 0x01
SYSTEMID.FAT_16_INF32MB  = 0x04
SYSTEMID.EXTENDED        = 0x05
SYSTEMID.FAT_16          = 0x06
SYSTEMID.NTFS_HPFS       = 0x07
SYSTEMID.PRI_FAT32_INT13 = 0x0b
SYSTEMID.EXT_FAT32_INT13 = 0x0c
SYSTEMID.EXT_FAT16_INT13 = 0x0e
SYSTEMID.WIN95_EXT       = 0x0f
SYSTEMID.LINUX_SWAP      = 0x82
SYSTEMID.LINUX_NATIVE    = 0x83


# partition boot flag
BOOTINDICATOR = v_types.venum()
BOOTINDICATOR.NOBOOT = 0
BOOTINDICATOR.SYSTEM_PARTITION = 128


FAT_TYPES = v_types.venum()
FAT_TYPES.UNSUPPORTED = 0
FAT_TYPES.FAT12 = 12
FAT_TYPES.FAT16 = 16
FAT_TYPES.FAT32 = 32

_SYSTEMID_FAT_TYPES = {
    SYSTEMID.FAT_12: FAT_TYPES.FAT12,
    SYSTEMID.FAT_16_INF32MB: FAT_TYPES.FAT16,
    SYSTEMID.FAT_16: FAT_TYPES.FAT16,
    SYSTEMID.EXT_FAT16_INT13: FAT_TYPES.FAT16,
    SYSTEMID.PRI_FAT32_INT13: FAT_TYPES.FAT32,
    SYSTEMID.EXT_FAT32_INT13: FAT_TYPES.FAT32,
}

# OEM names of boot sectors written straight to sector 0
SUPERFLOPPY_WATERMARK = re.compile(b'(IBM|MS|..DOS|..dos)')
NTFS_WATERMARK = b'NTFS'


class PartitionError(Exception):
    pass


class PartitionIoError(PartitionError):
    '''
    the boot sector could not be read.
    '''
    pass


class UnsupportedPartitionError(PartitionError):
    '''
    the located partition does not hold a FAT12/16/32 file system.
    '''
    def __init__(self, fattype):
        PartitionError.__init__(self, 'unsupported file system: %r' % (fattype,))
        self.fattype = fattype


Partition = collections.namedtuple('Partition', ('fattype', 'offset', 'count', 'index'))
Partition.__doc__ = '''
Location of the FAT volume in sectors of the underlying disk.
`index` is the MBR entry used, or None for a superfloppy.
'''

def isSupported(part):
    return part.fattype != FAT_TYPES.UNSUPPORTED


def getFatType(systemid):
    '''
    Translate an MBR partition type code to a FAT_TYPES value.
    '''
    return _SYSTEMID_FAT_TYPES.get(systemid, FAT_TYPES.UNSUPPORTED)


class PART_ENTRY(v_types.VStruct):
    '''
    partition entry in the MBR.
    '''
    def __init__(self):
        super(PART_ENTRY, self).__init__()
        self.BootIndicator = v_types.uint8(enum=BOOTINDICATOR)
        # CHS addressing is not used, sectors are located via the LBA fields
        self.StartingHead = v_types.uint8()
        self.StartingSectCylinder = v_types.uint16()
        self.SystemID = v_types.uint8(enum=SYSTEMID)
        self.EndingHead = v_types.uint8()
        self.EndingSectCylinder = v_types.uint16()
        # offset to partition in sectors from start of disk
        self.RelativeSector = v_types.uint32()
        # size of partition in sectors
        self.TotalSectors = v_types.uint32()


class MASTER_BOOT_RECORD(v_types.VStruct):
    def __init__(self):
        super(MASTER_BOOT_RECORD, self).__init__()
        self.BootCode = v_types.vbytes(size=446)
        self.Partitions = v_types.VArray(fields=[PART_ENTRY() for _ in range(MBR_PARTITION_COUNT)])
        self.EndOfSectorMarker = v_types.uint16()


class BOOT_SECTOR(v_types.VStruct):
    '''
    sector 0 seen as a volume boot record. only the head is interpreted.
    '''
    def __init__(self):
        super(BOOT_SECTOR, self).__init__()
        self.BS_jmpBoot = v_types.vbytes(size=3)
        self.BS_OEMName = v_types.vbytes(size=8)
        self.BS_Body = v_types.vbytes(size=499)
        self.EndOfSectorMarker = v_types.uint16()


class MbrLab(DiskLab):
    '''
    On-demand classification of sector 0.

    Example:

        lab = MbrLab(disk)
        part = lab.get('mbr:partition')

    '''
    def __init__(self, disk):
        DiskLab.__init__(self, disk)
        self.add('mbr:bootsect', self._getSectorStruct, BOOT_SECTOR)
        self.add('mbr:watermark', self._getWatermark)
        self.add('mbr:record', self._getSectorStruct, MASTER_BOOT_RECORD)
        self.add('mbr:partition', self._getPartition)

    def getWatermark(self):
        '''
        The 5 bytes at offset 3 (the start of the boot sector OEM name).
        '''
        return self.get('mbr:watermark')

    def isSuperFloppy(self):
        return SUPERFLOPPY_WATERMARK.match(self.getWatermark()) is not None

    def isNtfs(self):
        return self.getWatermark().startswith(NTFS_WATERMARK)

    def getPartition(self):
        return self.get('mbr:partition')

    def _getSectorStruct(self, cls):
        '''
        Parse a view of sector 0, which must be readable.
        '''
        try:
            return self.getStruct(0, cls)
        except (DeviceError, bot.TransportError) as e:
            raise PartitionIoError('reading the boot sector failed: %s' % (e,)) from e

    def _getWatermark(self):
        bs = self.get('mbr:bootsect')
        return bytes(bs.BS_OEMName)[:5]

    def _getPartition(self):
        total = self.disk.getSectorCount()

        if self.isNtfs():
            logger.error('found NTFS watermark: NTFS is not supported')
            return Partition(FAT_TYPES.UNSUPPORTED, 0, total, None)

        if self.isSuperFloppy():
            logger.debug('found FAT superfloppy watermark %r', self.getWatermark())
            return Partition(FAT_TYPES.FAT32, 0, total, None)

        logger.debug('found hard disk partition table')
        mbr = self.get('mbr:record')

        index = None
        fattype = FAT_TYPES.UNSUPPORTED
        for i in range(MBR_PARTITION_COUNT):
            entry = mbr.Partitions[i]
            fattype = getFatType(int(entry.SystemID))
            if fattype != FAT_TYPES.UNSUPPORTED:
                logger.info('found FAT%d (type 0x%.2x) on partition #%d', fattype, int(entry.SystemID), i)
                index = i
                break

            logger.warning('partition #%d is not supported: type=0x%.2x', i, int(entry.SystemID))

        if index is None:
            logger.warning('defaulting to partition #0')
            index = 0

        entry = mbr.Partitions[index]
        offset = int(entry.RelativeSector)
        count = int(entry.TotalSectors)

        if offset > total or count > total or offset + count > total:
            logger.warning('partition #%d (%d, %d) exceeds the device (%d sectors), using the whole device',
                           index, offset, count, total)
            offset = 0
            count = total

        logger.debug('sectorOffset=%d numberOfSectors=%d', offset, count)
        return Partition(fattype, offset, count, index)


def locatePartition(disk):
    '''
    Locate the FAT volume of a disk.

    Returns a Partition. An unsupported file system is reported through
    `fattype` (FAT_TYPES.UNSUPPORTED) rather than raised; callers check
    isSupported() before mounting. Raises PartitionIoError if sector 0
    cannot be read.
    '''
    return MbrLab(disk).getPartition()
