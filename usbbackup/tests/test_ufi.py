import struct
import unittest

import usbbackup.protos.bot as bot
import usbbackup.protos.ufi as ufi

from usbbackup.tests.common import *


class UfiTest(DisTest):

    def getStorage(self, sectors=64):
        fake = FakeMassStorage(patternImage(sectors))
        ms = ufi.MassStorage(bot.Transport(fake.epout, fake.epin))
        return fake, ms

    def test_ufi_read10(self):
        cmd = ufi.Read10().setBlocks(0x01020304, 0x0506)
        byts = cmd.getBytes()
        self.eq(len(byts), 12)
        self.eq(byts, b'\x28\x00\x01\x02\x03\x04\x00\x05\x06\x00\x00\x00')
        self.eq(cmd.getBlocks(), (0x01020304, 0x0506))

        self.assertRaises(ValueError, cmd.setBlocks, 0, 0x10000)

    def test_ufi_write10(self):
        byts = ufi.Write10().setBlocks(8, 2).getBytes()
        self.eq(byts[0], 0x2a)
        self.eq(struct.unpack_from('>I', byts, 2)[0], 8)
        self.eq(struct.unpack_from('>H', byts, 7)[0], 2)

    def test_ufi_fixed_commands(self):
        self.eq(ufi.ReadCapacity().getBytes(), b'\x25' + b'\x00' * 11)

        byts = ufi.RequestSense().getBytes()
        self.eq(byts[0], 0x03)
        self.eq(byts[4], 18)

    def test_ufi_parse_capacity(self):
        resp = struct.pack('>II', 0x003c0fff, 512)
        self.eq(ufi.ReadCapacity.parseResponse(resp), (0x003c1000, 512))

        self.assertRaises(bot.ShortReadError, ufi.ReadCapacity.parseResponse, resp[:6])

    def test_ufi_parse_sense(self):
        resp = bytearray(18)
        resp[0] = 0xf0
        resp[2] = 0x05
        resp[3:7] = struct.pack('>I', 99)
        resp[12] = 0x21
        resp[13] = 0x01

        sense = ufi.RequestSense.parseResponse(bytes(resp))
        self.eq(sense.errcode, 0x70)
        self.true(sense.valid)
        self.eq(sense.key, 5)
        self.eq(sense.asc, 0x21)
        self.eq(sense.ascq, 0x01)
        self.eq(sense.info, 99)

    def test_ufi_read_capacity(self):
        fake, ms = self.getStorage(sectors=64)
        self.eq(ms.readCapacity(), (64, 512))
        self.eq(ms.getSectorCount(), 64)
        self.eq(ms.getSectorSize(), 512)

    def test_ufi_read_write_blocks(self):
        fake, ms = self.getStorage()
        ms.readCapacity()

        image = patternImage(64)
        self.eq(ms.readBlocks(3, 2), image[3 * 512:5 * 512])

        ms.writeBlocks(10, b'\xee' * 1024)
        self.eq(bytes(fake.image[10 * 512:12 * 512]), b'\xee' * 1024)
        self.eq(bytes(fake.image[12 * 512:13 * 512]), image[12 * 512:13 * 512])

        tag, size, flags, lun, cmd = fake.cbws[-1]
        self.eq(size, 1024)
        self.eq(flags, 0x00)
        self.eq(cmd[0], 0x2a)

        self.eq(fake.timeouts[-2], bot.TIMEOUT_WRITE_DATA)

        self.assertRaises(ValueError, ms.writeBlocks, 0, b'\x00' * 100)

    def test_ufi_failed_command_sense(self):
        fake, ms = self.getStorage()
        ms.readCapacity()
        fake.failat.add((0x28, 5))

        with self.assertRaises(bot.CommandFailedError) as cm:
            ms.readBlocks(5, 1)

        # the failure was followed by a REQUEST SENSE
        self.eq(fake.cbws[-1][4][0], 0x03)
        self.eq(cm.exception.sense.key, 3)
        self.eq(cm.exception.sense.asc, 0x11)

    def test_ufi_failed_write(self):
        fake, ms = self.getStorage()
        ms.readCapacity()
        fake.failat.add((0x2a, 4))

        self.assertRaises(bot.CommandFailedError, ms.writeBlocks, 4, b'\xee' * 512)
        self.eq(bytes(fake.image[4 * 512:5 * 512]), patternImage(64)[4 * 512:5 * 512])
