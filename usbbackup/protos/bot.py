'''
USB Mass Storage Bulk-Only Transport (BOT) framing.

Each command is a three phase exchange over two bulk endpoints:

    host -> device  : Command Block Wrapper (31 bytes)
    host <-> device : optional data phase
    device -> host  : Command Status Wrapper (13 bytes)

via: http://www.usb.org/developers/docs/devclass_docs/usbmassbulk_10.pdf
'''
import logging
import threading

import usb.core
import vstruct2.types as v_types

from usbbackup.common import hexdump


logger = logging.getLogger(__name__)


CBW_SIGNATURE = 0x43425355  # 'USBC'
CSW_SIGNATURE = 0x53425355  # 'USBS'

CBW_LENGTH = 31
CSW_LENGTH = 13

# the command block field of a CBW holds at most 16 bytes
CBW_MAX_COMMAND = 16

TAG_MASK = 0xffffffff

# per-call timeouts in milliseconds
TIMEOUT_CBW = 800
TIMEOUT_CSW = 800
TIMEOUT_SHORT_DATA = 750
TIMEOUT_READ_DATA = 3000
TIMEOUT_WRITE_DATA = 5000


DIRECTION = v_types.venum()
DIRECTION.TO_DEVICE = 0x00
DIRECTION.TO_HOST = 0x80

CSW_STATUS = v_types.venum()
CSW_STATUS.PASSED = 0x00
CSW_STATUS.FAILED = 0x01
CSW_STATUS.PHASE_ERROR = 0x02


class TransportError(Exception):
    '''
    a Bulk-Only exchange failed. always fatal to the sector transfer in flight.
    '''
    pass


class ShortWriteError(TransportError):
    pass


class ShortReadError(TransportError):
    pass


class BadSignatureError(TransportError):
    pass


class TagMismatchError(TransportError):
    '''
    the CSW does not echo the tag of the CBW it answers.
    '''
    def __init__(self, expected, received):
        TransportError.__init__(self, 'CSW tag %d does not match CBW tag %d' % (received, expected))
        self.expected = expected
        self.received = received


class CommandFailedError(TransportError):
    '''
    the device completed the exchange but reported a failed command.
    `sense` holds the REQUEST SENSE data when it could be fetched.
    '''
    def __init__(self, status, tag=None, sense=None):
        TransportError.__init__(self, 'CSW#%s status: %d' % (tag, status))
        self.status = status
        self.tag = tag
        self.sense = sense


class TransportIoError(TransportError):
    '''
    the underlying bulk transfer errored out (including timeouts).
    '''
    pass


class CBW(v_types.VStruct):
    '''
    Command Block Wrapper. sent to the bulk OUT endpoint to start a command.
    '''
    def __init__(self):
        super(CBW, self).__init__()
        self.dCBWSignature = v_types.uint32()
        # echoed back by the device in the matching CSW
        self.dCBWTag = v_types.uint32()
        # number of bytes expected in the data phase
        self.dCBWDataTransferLength = v_types.uint32()
        self.bmCBWFlags = v_types.uint8(enum=DIRECTION)
        self.bCBWLUN = v_types.uint8()
        # number of valid bytes in CBWCB
        self.bCBWCBLength = v_types.uint8()
        self.CBWCB = v_types.vbytes(size=CBW_MAX_COMMAND)


class CSW(v_types.VStruct):
    '''
    Command Status Wrapper. read from the bulk IN endpoint to end a command.
    '''
    def __init__(self):
        super(CSW, self).__init__()
        self.dCSWSignature = v_types.uint32()
        self.dCSWTag = v_types.uint32()
        # difference between the expected and the actual data phase length
        self.dCSWDataResidue = v_types.uint32()
        self.bCSWStatus = v_types.uint8(enum=CSW_STATUS)


class Transport(object):
    '''
    One Bulk-Only command/status cycle at a time over a pair of bulk endpoints.

    The endpoints are pyusb style objects:

        epout.write(byts, timeout) -> count
        epin.read(size, timeout) -> array of bytes

    Example:

        trans = Transport(epout, epin)
        resp = trans.execute(cmd, DIRECTION.TO_HOST, size=8)

    Notes:

        * BOT does not pipeline, so execute() holds a lock for the whole
          cycle and the tag counter is only ever advanced under it.

    '''
    def __init__(self, epout, epin, lun=0, tag=0, owner=None):
        self.epout = epout
        self.epin = epin
        self.lun = lun
        # released on close(), see usbbackup.mount.UsbInterface
        self.owner = owner

        self._tag = tag & TAG_MASK
        self._lock = threading.RLock()

    def close(self):
        '''
        Give the USB interface back (when this transport owns one).
        '''
        if self.owner is not None:
            self.owner.release()

    def nextTag(self):
        '''
        Advance the shared tag counter and return the fresh tag.
        '''
        with self._lock:
            self._tag = (self._tag + 1) & TAG_MASK
            return self._tag

    def send(self, tag, size, command, direction):
        '''
        Frame a command in a CBW and transfer it whole.
        '''
        if len(command) > CBW_MAX_COMMAND:
            raise ValueError('command block too long: %d' % len(command))

        cbw = CBW()
        cbw.dCBWSignature = CBW_SIGNATURE
        cbw.dCBWTag = tag
        cbw.dCBWDataTransferLength = size
        cbw.bmCBWFlags = direction
        cbw.bCBWLUN = self.lun
        cbw.bCBWCBLength = len(command)
        cbw.CBWCB = bytes(command).ljust(CBW_MAX_COMMAND, b'\x00')

        byts = cbw.vsEmit()
        sent = self._bulkWrite(byts, TIMEOUT_CBW)
        if sent != len(byts):
            logger.error('CBW#%d short write: %d of %d bytes', tag, sent, len(byts))
            raise ShortWriteError('CBW#%d: sent %d of %d bytes' % (tag, sent, len(byts)))

        if logger.isEnabledFor(logging.DEBUG):
            logger.debug('CBW#%d:\n%s', tag, hexdump(byts))

    def receiveStatus(self, tag):
        '''
        Read the CSW answering `tag` and return its data residue.
        '''
        byts = self._bulkRead(CSW_LENGTH, TIMEOUT_CSW)
        if len(byts) < CSW_LENGTH:
            raise ShortReadError('CSW: got %d of %d bytes' % (len(byts), CSW_LENGTH))

        if logger.isEnabledFor(logging.DEBUG):
            logger.debug('CSW (for CBW#%d):\n%s', tag, hexdump(byts))

        csw = CSW()
        csw.vsParse(byts[:CSW_LENGTH])

        if csw.dCSWSignature != CSW_SIGNATURE:
            raise BadSignatureError('CSW signature: 0x%.8x' % int(csw.dCSWSignature))

        if csw.dCSWTag != tag:
            raise TagMismatchError(tag, int(csw.dCSWTag))

        if csw.bCSWStatus != CSW_STATUS.PASSED:
            raise CommandFailedError(int(csw.bCSWStatus), tag=tag)

        return int(csw.dCSWDataResidue)

    def execute(self, command, direction=DIRECTION.TO_HOST, size=0, data=None, timeout=None):
        '''
        Run one full command/data/status cycle.

        For TO_HOST commands `size` bytes are read during the data phase and
        returned. For TO_DEVICE commands `data` is written during the data
        phase and None is returned.

        Example:

            # READ CAPACITY
            resp = trans.execute(cmd, DIRECTION.TO_HOST, size=8)

        '''
        if direction == DIRECTION.TO_DEVICE and data is not None:
            size = len(data)

        if timeout is None:
            timeout = TIMEOUT_SHORT_DATA

        with self._lock:
            tag = self.nextTag()
            self.send(tag, size, command, direction)

            resp = None
            short = None
            if size:
                try:
                    if direction == DIRECTION.TO_HOST:
                        resp = self._bulkRead(size, timeout)
                        if len(resp) != size:
                            short = ShortReadError('CBW#%d data: got %d of %d bytes' % (tag, len(resp), size))
                    else:
                        sent = self._bulkWrite(data, timeout)
                        if sent != size:
                            short = ShortWriteError('CBW#%d data: sent %d of %d bytes' % (tag, sent, size))

                except TransportIoError as e:
                    # the device may still answer with a CSW; keep the
                    # exchange in step before failing the command.
                    short = e

            try:
                self.receiveStatus(tag)
            except TransportError:
                if short is not None:
                    raise short
                raise

            if short is not None:
                raise short

            return resp

    def _bulkWrite(self, byts, timeout):
        try:
            return self.epout.write(byts, timeout)
        except usb.core.USBError as e:
            raise TransportIoError('bulk OUT failed: %s' % (e,)) from e

    def _bulkRead(self, size, timeout):
        try:
            return bytes(self.epin.read(size, timeout))
        except usb.core.USBError as e:
            raise TransportIoError('bulk IN failed: %s' % (e,)) from e
