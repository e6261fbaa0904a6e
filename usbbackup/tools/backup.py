import sys
import logging
import argparse
import importlib

import usbbackup.mount as u_mount
import usbbackup.backup as u_backup
import usbbackup.formats.mbr as u_mbr

from usbbackup.disk import ImageDisk
from usbbackup.device import BlockDevice
from usbbackup.protos.ufi import MassStorage
from usbbackup.config import loadConfig, mergeArgs
from usbbackup.common import colify

logger = logging.getLogger(__name__)

def loadFsFactory(name):
    '''
    Import a "module:callable" file system factory.
    '''
    modname, _, funcname = name.partition(':')
    if not funcname:
        raise ValueError('file system driver must look like module:callable')

    mod = importlib.import_module(modname)
    return getattr(mod, funcname)

def printPartition(disk, part):
    sectsize = disk.getSectorSize()
    print('sector size: %d' % sectsize)
    print('sectors:     %d (%d bytes)' % (disk.getSectorCount(), disk.getSectorCount() * sectsize))
    if part.index is None:
        print('layout:      superfloppy')
    else:
        print('layout:      MBR, partition #%d' % part.index)

    fattype = 'FAT%d' % part.fattype if u_mbr.isSupported(part) else 'unsupported'
    print('file system: %s' % fattype)
    print('partition:   sectors %d - %d' % (part.offset, part.offset + part.count))
    return 0 if u_mbr.isSupported(part) else 1

def showImage(path):
    disk = ImageDisk(path)
    try:
        part = u_mbr.locatePartition(disk)
        return printPartition(disk, part)
    finally:
        disk.close()

def showDevice(conf):
    devs = u_mount.findDevices()
    if not devs:
        print('no USB mass-storage device found')
        return 1

    dev = BlockDevice(MassStorage(u_mount.openTransport(devs[0], lun=conf.lun)))
    try:
        part = dev.init()
        return printPartition(dev, part)
    finally:
        dev.close()

def runBackup(conf, srcdir):
    if conf.dest is None:
        print('no destination directory given (--dest)')
        return 1

    total = u_backup.count(srcdir)

    def progress(current):
        sys.stderr.write('\r  %d/%d files' % (current, total))
        sys.stderr.flush()

    failed = u_backup.backup(srcdir, conf.dest, delete=conf.delete, overwrite=conf.overwrite, progress=progress)
    sys.stderr.write('\n')

    if failed:
        print('backup incomplete, %d file(s) could not be copied:' % len(failed))
        for name in failed:
            print('  %s' % name)
        return 1

    print('backup complete: %d file(s)' % total)
    return 0

def makeParser():
    p = argparse.ArgumentParser(prog='usbbackup', description='back up the FAT partition of a USB stick')
    p.add_argument('--config', help='settings file (default: ~/.usbbackup.ini)')
    p.add_argument('--source', help='directory on the device to back up (default: /)')
    p.add_argument('--dest', help='local destination directory')
    p.add_argument('--delete', dest='delete', action='store_const', const=True, help='delete files from the device once copied')
    p.add_argument('--no-delete', dest='delete', action='store_const', const=False, help='keep files on the device')
    p.add_argument('--overwrite', dest='overwrite', action='store_const', const=True, help='overwrite existing destination files')
    p.add_argument('--no-overwrite', dest='overwrite', action='store_const', const=False, help='keep existing destination files')
    p.add_argument('--debug', dest='debug', action='store_const', const=True, help='use the in-memory mock device')
    p.add_argument('--ext', action='append', help='only count/list files with this extension (repeatable)')
    p.add_argument('--lun', type=int, help='logical unit number (default: 0)')
    p.add_argument('--fs-driver', help='FAT file system factory as module:callable, called with (disk, readonly)')
    p.add_argument('--image', help='classify a raw disk image instead of a USB device (with --info)')
    p.add_argument('--info', default=False, action='store_true', help='show capacity and partition, then exit')
    p.add_argument('--count', default=False, action='store_true', help='count files, then exit')
    p.add_argument('--list', default=False, action='store_true', help='list files, then exit')
    p.add_argument('-v', '--verbose', default=False, action='store_true', help='debug logging')
    return p

def main(argv):

    args = makeParser().parse_args(argv)

    logging.basicConfig(level=logging.DEBUG if args.verbose else logging.INFO,
                        format='%(levelname)s %(name)s: %(message)s')

    conf = mergeArgs(loadConfig(args.config), args)

    try:
        if args.image:
            return showImage(args.image)

        if args.info:
            return showDevice(conf)

        fsfactory = None
        if args.fs_driver:
            fsfactory = loadFsFactory(args.fs_driver)

        mnt = u_mount.mount(conf, fsfactory=fsfactory)

    except u_mount.MountError as e:
        print('mount failed: %s' % e)
        return 1

    except Exception as e:
        logger.debug('failure', exc_info=True)
        print('operation failed: %s' % e)
        return 1

    try:
        srcdir = u_backup.navigate(mnt.fs.getRoot(), conf.source)
        if srcdir is None:
            print('source directory %s not found on the device' % conf.source)
            return 1

        if args.count:
            print(u_backup.count(srcdir, extensions=conf.extensions))
            return 0

        if args.list:
            rows = [ (path,) for path in u_backup.listFiles(srcdir, extensions=conf.extensions, base=conf.source) ]
            print( colify( rows, titles=('Path',) ) )
            return 0

        return runBackup(conf, srcdir)

    except Exception as e:
        logger.debug('failure', exc_info=True)
        print('operation failed: %s' % e)
        return 1

    finally:
        mnt.fs.close()
        if mnt.device is not None:
            mnt.device.close()

if __name__ == '__main__':
    sys.exit(main(sys.argv[1:]))
