'''
Find a USB stick, claim its mass-storage interface and mount the FAT
partition on it.
'''
import logging
import collections

import usb.core
import usb.util
import vstruct2.types as v_types

import usbbackup.protos.bot as bot
import usbbackup.formats.mbr as mbr

from usbbackup.fs import RamFileSystem
from usbbackup.disk import DeviceError
from usbbackup.device import BlockDevice
from usbbackup.protos.ufi import MassStorage


logger = logging.getLogger(__name__)


MASS_STORAGE_CLASS = 0x08
BULK_ONLY_PROTOCOL = 0x50

KILOBYTE = 1024


MOUNT_FAILURES = v_types.venum()
MOUNT_FAILURES.NO_DEVICE = 1
MOUNT_FAILURES.NO_INTERFACE = 2
MOUNT_FAILURES.CLAIM_FAILED = 3
MOUNT_FAILURES.UNSUPPORTED_FS = 4
MOUNT_FAILURES.NO_FS_DRIVER = 5
MOUNT_FAILURES.IO_FAILURE = 6


class MountError(Exception):
    '''
    the disk could not be mounted. `reason` is a MOUNT_FAILURES value.
    '''
    def __init__(self, reason, msg):
        Exception.__init__(self, msg)
        self.reason = reason


MountedDisk = collections.namedtuple('MountedDisk', ('fs', 'device', 'partition'))


def _isMassStorageInterface(intf):
    return intf.bInterfaceClass == MASS_STORAGE_CLASS and intf.bInterfaceProtocol == BULK_ONLY_PROTOCOL


def _hasMassStorage(usbdev):
    for cfg in usbdev:
        if usb.util.find_descriptor(cfg, custom_match=_isMassStorageInterface) is not None:
            return True
    return False


def findDevices(vid=None, pid=None):
    '''
    List the attached USB devices exposing a bulk-only mass-storage interface.
    '''
    kwargs = {}
    if vid is not None:
        kwargs['idVendor'] = vid
    if pid is not None:
        kwargs['idProduct'] = pid

    devs = list(usb.core.find(find_all=True, custom_match=_hasMassStorage, **kwargs))
    for dev in devs:
        logger.debug('found device: %.4x:%.4x, class: %.2x:%.2x',
                     dev.idVendor, dev.idProduct, dev.bDeviceClass, dev.bDeviceSubClass)
    return devs


def _isDirection(direction):
    def match(ep):
        return usb.util.endpoint_type(ep.bmAttributes) == usb.util.ENDPOINT_TYPE_BULK and \
                usb.util.endpoint_direction(ep.bEndpointAddress) == direction
    return match


def findEndpoints(intf):
    '''
    Pick the bulk (OUT, IN) endpoint pair of an interface by direction.
    '''
    for ep in intf:
        epdir = 'IN' if usb.util.endpoint_direction(ep.bEndpointAddress) == usb.util.ENDPOINT_IN else 'OUT'
        eptype = 'BULK' if usb.util.endpoint_type(ep.bmAttributes) == usb.util.ENDPOINT_TYPE_BULK else 'NOT_BULK'
        logger.debug('EP@ 0x%.2x, %s/%s', ep.bEndpointAddress, eptype, epdir)

    epout = usb.util.find_descriptor(intf, custom_match=_isDirection(usb.util.ENDPOINT_OUT))
    epin = usb.util.find_descriptor(intf, custom_match=_isDirection(usb.util.ENDPOINT_IN))
    if epout is None or epin is None:
        raise MountError(MOUNT_FAILURES.NO_INTERFACE, 'interface #%d lacks a bulk IN/OUT endpoint pair' % intf.bInterfaceNumber)

    return epout, epin


class UsbInterface(object):
    '''
    A claimed mass-storage interface. release() hands it back to the
    system, reattaching the kernel driver if it had to be detached.
    '''
    def __init__(self, usbdev, intf, detached=False):
        self.usbdev = usbdev
        self.intf = intf
        self.detached = detached
        self.claimed = True

    def release(self):
        if not self.claimed:
            return

        self.claimed = False
        num = self.intf.bInterfaceNumber
        try:
            usb.util.release_interface(self.usbdev, self.intf)
            if self.detached:
                logger.info('reattaching kernel driver to interface #%d', num)
                self.usbdev.attach_kernel_driver(num)

        except usb.core.USBError as e:
            logger.warning('releasing interface #%d: %s', num, e)

        finally:
            usb.util.dispose_resources(self.usbdev)


def openTransport(usbdev, lun=0):
    '''
    Claim the mass-storage interface of a pyusb device and return a
    Transport over its bulk endpoints. Closing the Transport releases
    the interface.
    '''
    try:
        cfg = usbdev.get_active_configuration()
    except usb.core.USBError:
        cfg = None

    intf = None
    detached = False
    try:
        if cfg is None:
            usbdev.set_configuration()
            cfg = usbdev.get_active_configuration()

        intf = usb.util.find_descriptor(cfg, custom_match=_isMassStorageInterface)
        if intf is None:
            raise MountError(MOUNT_FAILURES.NO_INTERFACE, 'no bulk-only mass-storage interface')

        num = intf.bInterfaceNumber
        try:
            if usbdev.is_kernel_driver_active(num):
                logger.info('detaching kernel driver from interface #%d', num)
                usbdev.detach_kernel_driver(num)
                detached = True
        except NotImplementedError:
            logger.debug('kernel driver detach is not supported on this platform')

        usb.util.claim_interface(usbdev, intf)

    except MountError:
        usb.util.dispose_resources(usbdev)
        raise

    except usb.core.USBError as e:
        if intf is None:
            usb.util.dispose_resources(usbdev)
        else:
            UsbInterface(usbdev, intf, detached=detached).release()
        raise MountError(MOUNT_FAILURES.CLAIM_FAILED, 'could not claim the interface: %s' % (e,)) from e

    logger.debug('claimed interface #%d: class=0x%.2x subclass=0x%.2x protocol=0x%.2x',
                 num, intf.bInterfaceClass, intf.bInterfaceSubClass, intf.bInterfaceProtocol)

    owner = UsbInterface(usbdev, intf, detached=detached)
    try:
        epout, epin = findEndpoints(intf)
    except MountError:
        owner.release()
        raise

    return bot.Transport(epout, epin, lun=lun, owner=owner)


def _addMockFile(directory, idx, size):
    fill = str(idx % 10).encode('ascii')
    fobj = directory.addFile('image_%.2d.jpg' % idx).getFile()
    fobj.write(0, fill * size)
    fobj.flush()


def buildMockFileSystem():
    '''
    Build the in-memory stand-in for a camera card:

        /image_00.jpg .. /image_09.jpg                  5 KiB each
        /DCIM/100_PANO/image_00.jpg .. image_154.jpg    100 KiB each

    '''
    logger.debug('creating mock fs hierarchy...')
    fs = RamFileSystem()
    root = fs.getRoot()
    for i in range(10):
        _addMockFile(root, i, 5 * KILOBYTE)

    dcim = root.addDirectory('DCIM').getDirectory()
    pano = dcim.addDirectory('100_PANO').getDirectory()
    for i in range(155):
        _addMockFile(pano, i, 100 * KILOBYTE)

    return fs


def mount(conf, fsfactory=None, usbdev=None, transport=None):
    '''
    Mount the FAT partition of the first USB stick (or of `usbdev`).

    `fsfactory(disk, readonly)` builds the FileSystem on the partition's
    LogicalDisk. The device is read-only unless delete-after-backup is set.

    Example:

        mnt = mount(conf, fsfactory=myfat.open)
        root = mnt.fs.getRoot()

    '''
    if conf.debug:
        logger.info('mounting the mock device')
        return MountedDisk(buildMockFileSystem(), None, None)

    if transport is None:
        if usbdev is None:
            devs = findDevices()
            if not devs:
                raise MountError(MOUNT_FAILURES.NO_DEVICE, 'no USB mass-storage device found')
            usbdev = devs[0]

        transport = openTransport(usbdev, lun=conf.lun)

    dev = BlockDevice(MassStorage(transport))
    try:
        part = dev.init()
    except (bot.TransportError, DeviceError, mbr.PartitionError) as e:
        dev.close()
        raise MountError(MOUNT_FAILURES.IO_FAILURE, 'could not read the disk: %s' % (e,)) from e

    if not mbr.isSupported(part):
        dev.close()
        err = mbr.UnsupportedPartitionError(part.fattype)
        raise MountError(MOUNT_FAILURES.UNSUPPORTED_FS, str(err)) from err

    readonly = not conf.delete
    dev.setReadOnly(readonly)

    if fsfactory is None:
        dev.close()
        raise MountError(MOUNT_FAILURES.NO_FS_DRIVER, 'no file system driver for FAT%d' % part.fattype)

    logger.info('mounting FAT%d partition (%d, %d) %s', part.fattype, part.offset, part.count, 'ro' if readonly else 'rw')
    try:
        fs = fsfactory(dev.getPartitionDisk(), readonly)
    except Exception:
        dev.close()
        raise

    return MountedDisk(fs, dev, part)
