'''
UFI / SCSI command blocks and the mass-storage command set built on them.

Only the commands needed for block I/O are implemented:

    REQUEST SENSE   (0x03)  error details after a failed command
    READ CAPACITY   (0x25)  last logical block address and block length
    READ(10)        (0x28)  read whole sectors
    WRITE(10)       (0x2a)  write whole sectors

via: http://www.usb.org/developers/docs/devclass_docs/usbmass-ufi10.pdf
'''
import struct
import logging
import collections

import usbbackup.protos.bot as bot


logger = logging.getLogger(__name__)


# UFI command blocks are always 12 bytes long
UFI_COMMAND_LENGTH = 12

OPCODE_REQUEST_SENSE = 0x03
OPCODE_READ_CAPACITY = 0x25
OPCODE_READ_10 = 0x28
OPCODE_WRITE_10 = 0x2a

READ_CAPACITY_RESPONSE_LENGTH = 8
REQUEST_SENSE_RESPONSE_LENGTH = 18

# assumption until READ CAPACITY says otherwise
DEFAULT_SECTOR_SIZE = 512

MAX_TRANSFER_BLOCKS = 0xffff


SenseData = collections.namedtuple('SenseData', ('errcode', 'valid', 'key', 'asc', 'ascq', 'info'))


class UfiCommand(object):
    '''
    A reusable command block buffer.

    The opcode (and any static field) is fixed at construction while the
    per call parameters are packed into the same buffer before each use.
    '''
    opcode = None

    def __init__(self):
        self.buf = bytearray(UFI_COMMAND_LENGTH)
        self.buf[0] = self.opcode

    def getBytes(self):
        return bytes(self.buf)


class RequestSense(UfiCommand):

    opcode = OPCODE_REQUEST_SENSE

    def __init__(self, size=REQUEST_SENSE_RESPONSE_LENGTH):
        UfiCommand.__init__(self)
        self.size = size
        # allocation length
        self.buf[4] = size

    @staticmethod
    def parseResponse(byts):
        '''
        Decode fixed format sense data.
        '''
        errcode = byts[0] & 0x7f
        valid = bool(byts[0] & 0x80)
        info, = struct.unpack_from('>I', byts, 3)
        key = byts[2] & 0x0f
        asc = byts[12] if len(byts) > 12 else 0
        ascq = byts[13] if len(byts) > 13 else 0
        return SenseData(errcode, valid, key, asc, ascq, info)


class ReadCapacity(UfiCommand):

    opcode = OPCODE_READ_CAPACITY

    @staticmethod
    def parseResponse(byts):
        '''
        Returns (sector count, sector size).

        The device reports the *last* logical block address, so the
        sector count is one greater.
        '''
        if len(byts) < READ_CAPACITY_RESPONSE_LENGTH:
            raise bot.ShortReadError('READ CAPACITY: got %d of %d bytes' % (len(byts), READ_CAPACITY_RESPONSE_LENGTH))

        lastlba, blocklen = struct.unpack_from('>II', byts, 0)
        return lastlba + 1, blocklen


class Read10(UfiCommand):

    opcode = OPCODE_READ_10

    def setBlocks(self, lba, count):
        '''
        Pack the logical block address (offset 2) and transfer length
        in sectors (offset 7). Returns self for chaining.
        '''
        if count < 0 or count > MAX_TRANSFER_BLOCKS:
            raise ValueError('invalid transfer length: %d' % count)

        struct.pack_into('>I', self.buf, 2, lba)
        struct.pack_into('>H', self.buf, 7, count)
        return self

    def getBlocks(self):
        lba, = struct.unpack_from('>I', self.buf, 2)
        count, = struct.unpack_from('>H', self.buf, 7)
        return lba, count


class Write10(Read10):

    opcode = OPCODE_WRITE_10


class MassStorage(object):
    '''
    The block command set of a single logical unit over a Transport.

    Example:

        ms = MassStorage(trans)
        sectors, sectsize = ms.readCapacity()
        byts = ms.readBlocks(0, 1)

    Notes:

        * commands are never retried. a failed command fetches the
          sense data once (for logging) and raises CommandFailedError.

    '''
    def __init__(self, transport):
        self.transport = transport

        self.sectors = 0
        self.sectsize = DEFAULT_SECTOR_SIZE

        self._sense = RequestSense()
        self._readcap = ReadCapacity()
        self._read10 = Read10()
        self._write10 = Write10()

    def getSectorSize(self):
        return self.sectsize

    def getSectorCount(self):
        return self.sectors

    def readCapacity(self):
        '''
        Query and remember the sector count and sector size.
        '''
        logger.debug('readCapacity...')
        resp = self._execute(self._readcap, bot.DIRECTION.TO_HOST, size=READ_CAPACITY_RESPONSE_LENGTH)

        sectors, sectsize = ReadCapacity.parseResponse(resp)
        if sectsize == 0:
            raise bot.TransportError('READ CAPACITY reported a zero block length')

        self.sectors = sectors
        self.sectsize = sectsize
        logger.info('readCapacity: sectors=%d sector size=%d', sectors, sectsize)
        return sectors, sectsize

    def close(self):
        self.transport.close()

    def requestSense(self):
        logger.debug('requestSense...')
        resp = self.transport.execute(self._sense.getBytes(), bot.DIRECTION.TO_HOST,
                                      size=self._sense.size, timeout=bot.TIMEOUT_SHORT_DATA)
        sense = RequestSense.parseResponse(resp)
        logger.debug('requestSense: key=0x%x asc=0x%.2x ascq=0x%.2x info=%d valid=%s',
                     sense.key, sense.asc, sense.ascq, sense.info, sense.valid)
        return sense

    def readBlocks(self, lba, count):
        '''
        Read `count` whole sectors starting at `lba` in a single command.
        '''
        size = count * self.sectsize
        logger.debug('read: %d sector(s) @ 0x%x', count, lba)
        self._read10.setBlocks(lba, count)
        return self._execute(self._read10, bot.DIRECTION.TO_HOST, size=size, timeout=bot.TIMEOUT_READ_DATA)

    def writeBlocks(self, lba, byts):
        '''
        Write whole sectors starting at `lba` in a single command.
        '''
        count, rem = divmod(len(byts), self.sectsize)
        if rem:
            raise ValueError('write of %d bytes is not sector aligned' % len(byts))

        logger.debug('write: %d sector(s) @ 0x%x', count, lba)
        self._write10.setBlocks(lba, count)
        self._execute(self._write10, bot.DIRECTION.TO_DEVICE, data=byts, timeout=bot.TIMEOUT_WRITE_DATA)

    def _execute(self, cmd, direction, size=0, data=None, timeout=bot.TIMEOUT_SHORT_DATA):
        try:
            return self.transport.execute(cmd.getBytes(), direction, size=size, data=data, timeout=timeout)

        except bot.CommandFailedError as e:
            try:
                e.sense = self.requestSense()
            except bot.TransportError as senserr:
                logger.warning('requestSense after failed opcode 0x%.2x: %s', cmd.opcode, senserr)
            else:
                logger.error('opcode 0x%.2x failed: sense key=0x%x asc=0x%.2x ascq=0x%.2x',
                             cmd.opcode, e.sense.key, e.sense.asc, e.sense.ascq)
            raise
