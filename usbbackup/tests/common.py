import array
import struct
import unittest
import collections

import usb.core

CBW_FORMAT = '<IIIBBB'
CSW_FORMAT = '<IIIB'

CBW_SIG = 0x43425355
CSW_SIG = 0x53425355

class DisTest(unittest.TestCase):

    def eq(self, x, y):
        self.assertEqual(x,y)

    def ne(self, x, y):
        self.assertNotEqual(x,y)

    def nn(self, x):
        self.assertIsNotNone(x)

    def true(self, x):
        self.assertTrue(x)

    def false(self, x):
        self.assertFalse(x)

class FakeOutEndpoint(object):

    def __init__(self, dev):
        self.dev = dev

    def write(self, byts, timeout=None):
        return self.dev.onWrite(bytes(byts), timeout)

class FakeInEndpoint(object):

    def __init__(self, dev):
        self.dev = dev

    def read(self, size, timeout=None):
        return array.array('B', self.dev.onRead(size, timeout))

class FakeMassStorage(object):
    '''
    A simulated bulk-only USB stick over an in-memory sector image.

    Knobs for failure injection:

        failopcodes  - opcodes answered with a failed CSW status
        failat       - (opcode, lba) pairs answered with a failed CSW status
        badsig       - answer with a broken CSW signature
        tagskew      - added to the echoed CSW tag
        shortcsw     - truncate CSWs to this many bytes
        shortwrite   - the OUT endpoint only accepts this many bytes
        timeoutread  - raise usb.core.USBError on data phase reads

    '''
    def __init__(self, image, sectsize=512):
        self.image = bytearray(image)
        self.sectsize = sectsize

        self.epout = FakeOutEndpoint(self)
        self.epin = FakeInEndpoint(self)

        self.cbws = []
        self.timeouts = []
        self.pending = collections.deque()
        self.expect = None

        self.failopcodes = set()
        self.failat = set()
        self.badsig = False
        self.tagskew = 0
        self.shortcsw = None
        self.shortwrite = None
        self.timeoutread = False

    def getSectorCount(self):
        return len(self.image) // self.sectsize

    def onWrite(self, byts, timeout):
        self.timeouts.append(timeout)
        if self.shortwrite is not None:
            return min(len(byts), self.shortwrite)

        if self.expect is not None:
            tag, lba, status = self.expect
            self.expect = None
            if status == 0:
                off = lba * self.sectsize
                self.image[off:off + len(byts)] = byts
            self._status(tag, status)
            return len(byts)

        sig, tag, size, flags, lun, cblen = struct.unpack_from(CBW_FORMAT, byts)
        assert sig == CBW_SIG
        cmd = bytes(byts[15:15 + cblen])
        self.cbws.append((tag, size, flags, lun, cmd))

        opcode = cmd[0]
        lba = None
        if opcode in (0x28, 0x2a):
            lba, = struct.unpack_from('>I', cmd, 2)

        if opcode in self.failopcodes or (opcode, lba) in self.failat:
            self._fail(tag, size, flags, lba)

        elif opcode == 0x25:
            self.pending.append(struct.pack('>II', self.getSectorCount() - 1, self.sectsize))
            self._status(tag, 0)

        elif opcode == 0x03:
            sense = bytearray(cmd[4])
            sense[0] = 0x70
            sense[2] = 0x03
            sense[12] = 0x11
            self.pending.append(bytes(sense))
            self._status(tag, 0)

        elif opcode == 0x28:
            count, = struct.unpack_from('>H', cmd, 7)
            off = lba * self.sectsize
            self.pending.append(bytes(self.image[off:off + count * self.sectsize]))
            self._status(tag, 0)

        elif opcode == 0x2a:
            self.expect = (tag, lba, 0)

        else:
            self._fail(tag, size, flags, lba)

        return len(byts)

    def _fail(self, tag, size, flags, lba):
        # the data phase still runs, the status reports the failure
        if not size:
            self._status(tag, 1)
        elif flags & 0x80:
            self.pending.append(b'\x00' * size)
            self._status(tag, 1)
        else:
            self.expect = (tag, lba, 1)

    def onRead(self, size, timeout):
        self.timeouts.append(timeout)
        if not self.pending:
            raise usb.core.USBError('Operation timed out')

        if self.timeoutread and size != 13:
            self.pending.popleft()
            raise usb.core.USBError('Operation timed out')

        return self.pending.popleft()[:size]

    def _status(self, tag, status):
        sig = CSW_SIG
        if self.badsig:
            sig = 0x12345678

        csw = struct.pack(CSW_FORMAT, sig, (tag + self.tagskew) & 0xffffffff, 0, status)
        if self.shortcsw is not None:
            csw = csw[:self.shortcsw]
        self.pending.append(csw)

def patternImage(sectors, sectsize=512):
    '''
    Build an image where every byte depends on its offset.
    '''
    return bytes([ (i * 7 + (i // 251)) & 0xff for i in range(sectors * sectsize) ])

def mbrImage(sectors, entries, sectsize=512, oem=b'\xfa\x33\xc0\x8e\xd0'):
    '''
    Build an image whose sector 0 is an MBR holding `entries`, a list of
    (index, systemid, offset, count) tuples.
    '''
    image = bytearray(sectors * sectsize)
    image[0:3] = b'\xeb\x3c\x90'
    image[3:3 + len(oem)] = oem
    for idx, systemid, offset, count in entries:
        base = 0x1be + idx * 16
        image[base + 4] = systemid
        struct.pack_into('<II', image, base + 8, offset, count)
    image[510:512] = b'\x55\xaa'
    return image

def superFloppyImage(sectors, oem=b'MSDOS5.0', sectsize=512):
    image = bytearray(sectors * sectsize)
    image[0:3] = b'\xeb\x3c\x90'
    image[3:3 + len(oem)] = oem
    image[510:512] = b'\x55\xaa'
    return image

def addFile(directory, name, byts):
    fobj = directory.addFile(name).getFile()
    fobj.write(0, byts)
    return fobj

def getDir(directory, name):
    return directory.getEntry(name).getDirectory()
