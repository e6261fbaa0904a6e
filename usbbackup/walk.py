'''
Depth first traversal of a file system directory graph.
'''
import os

# FAT directories list themselves and their parent
PSEUDO_ENTRIES = ('.', '..')


class Visitor(object):
    '''
    Callbacks invoked by walk().

    `dest` is a marker mirroring the position in the source tree (a local
    path, a logical path, or any object a visitor chooses). The marker
    returned by onEnterDirectory() is handed to the files and directories
    below it and to the matching onExitDirectory().
    '''
    def onFile(self, entry, dest):
        pass

    def onEnterDirectory(self, entry, dest):
        return os.path.join(dest, entry.name)

    def onExitDirectory(self, entry, dest):
        pass


def walk(srcdir, dest, visitor):
    '''
    Visit every file and directory below `srcdir`, in the order the
    directory yields them, completing each directory before its next
    sibling.

    Example:

        class Printer(Visitor):
            def onFile(self, entry, dest):
                print(os.path.join(dest, entry.name))

        walk(fs.getRoot(), '/', Printer())

    Notes:

        * exceptions raised by a visitor abort the walk

    '''
    if srcdir is None:
        raise ValueError('srcdir can not be None')
    if dest is None:
        raise ValueError('dest can not be None')

    for entry in srcdir.iterate():
        if entry.isFile():
            visitor.onFile(entry, dest)

        elif entry.isDirectory() and entry.name not in PSEUDO_ENTRIES:
            subdest = visitor.onEnterDirectory(entry, dest)
            walk(entry.getDirectory(), subdest, visitor)
            visitor.onExitDirectory(entry, subdest)
