'''
Backup settings. Persisted by the user, only ever read here.

Example settings file:

    [usbbackup]
    source = /DCIM
    dest = /home/me/photos
    delete = no
    overwrite = yes
    extensions = jpg, jpeg, mp4

'''
import os
import logging
import collections
import configparser


logger = logging.getLogger(__name__)


SECTION = 'usbbackup'

DEFAULT_CONFIG_PATH = os.path.join('~', '.usbbackup.ini')


BackupConfig = collections.namedtuple('BackupConfig', ('source', 'dest', 'delete', 'overwrite', 'debug', 'extensions', 'lun'))
BackupConfig.__new__.__defaults__ = ('/', None, False, False, False, None, 0)


def _splitList(valu):
    items = [ v.strip() for v in valu.split(',') ]
    return tuple([ v for v in items if v ])


def loadConfig(path=None):
    '''
    Read a BackupConfig from an INI file.

    A missing file (or missing keys) yields the defaults.
    '''
    if path is None:
        path = DEFAULT_CONFIG_PATH

    path = os.path.expanduser(path)

    conf = BackupConfig()
    parser = configparser.ConfigParser()
    if not parser.read(path):
        logger.debug('no settings file at %s, using defaults', path)
        return conf

    if not parser.has_section(SECTION):
        logger.warning('settings file %s has no [%s] section', path, SECTION)
        return conf

    sect = parser[SECTION]

    extensions = conf.extensions
    if sect.get('extensions'):
        extensions = _splitList(sect.get('extensions'))

    return conf._replace(
        source=sect.get('source', conf.source),
        dest=sect.get('dest', conf.dest),
        delete=sect.getboolean('delete', conf.delete),
        overwrite=sect.getboolean('overwrite', conf.overwrite),
        debug=sect.getboolean('debug', conf.debug),
        extensions=extensions,
        lun=sect.getint('lun', conf.lun),
    )


def mergeArgs(conf, args):
    '''
    Override settings with the command line options that were given.

    `args` is an argparse namespace; options left at None keep the
    settings file value. Flags given as False (--no-delete) turn a
    setting off.
    '''
    updates = {}
    for name in ('source', 'dest', 'lun', 'delete', 'overwrite', 'debug'):
        valu = getattr(args, name, None)
        if valu is not None:
            updates[name] = valu

    exts = getattr(args, 'ext', None)
    if exts:
        updates['extensions'] = tuple(exts)

    return conf._replace(**updates)
