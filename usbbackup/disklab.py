from usbbackup.disk import DeviceIoError
from usbbackup.common import *

class DiskLab(OnDemand):
    '''
    Base class for on-disk structure parsers.

    The DiskLab class wraps a sector addressed disk (anything with a
    read(off, size) method) and provides on-demand parsing helpers.

    Example:

        class FooLab(DiskLab):

            def __init__(self, disk):
                DiskLab.__init__(self, disk)
                self.add('foo:head', self._getFooHead )

            def _getFooHead(self):
                return self.getStruct(0, FOO_HEAD)

        foo = FooLab(disk)
        head = foo.get('foo:head')

    '''
    def __init__(self, disk, off=0):
        OnDemand.__init__(self)
        self.disk = disk
        self.off = off

    def getStruct(self, off, cls, *args, **kwargs):
        '''
        Construct a VStruct and parse it from the disk byte offset.

        Example:

            mbr = lab.getStruct(0, MASTER_BOOT_RECORD)

        '''
        obj = cls(*args,**kwargs)
        obj.vsParse( self.readAtOff(off, len(obj)) )
        return obj

    def readAtOff(self, off, size, shortok=False):
        byts = self.disk.read(self.off + off, size)
        if len(byts) != size and not shortok:
            raise DeviceIoError('readAtOff(%d,%d) short: %d' % (off,size,len(byts)))
        return byts
