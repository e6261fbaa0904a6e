import unittest

from usbbackup.fs import RamFileSystem
from usbbackup.walk import Visitor, walk

from usbbackup.tests.common import *


class Recorder(Visitor):

    def __init__(self):
        self.events = []

    def onFile(self, entry, dest):
        self.events.append(('file', entry.name, dest))

    def onEnterDirectory(self, entry, dest):
        self.events.append(('enter', entry.name, dest))
        return dest + entry.name + '/'

    def onExitDirectory(self, entry, dest):
        self.events.append(('exit', entry.name, dest))


class WalkTest(DisTest):

    def getTree(self):
        '''
        /a.txt
        /sub/b.txt
        /sub/deep/c.txt
        /z.txt
        '''
        fs = RamFileSystem()
        root = fs.getRoot()
        addFile(root, 'a.txt', b'a')
        sub = root.addDirectory('sub').getDirectory()
        addFile(sub, 'b.txt', b'b')
        deep = sub.addDirectory('deep').getDirectory()
        addFile(deep, 'c.txt', b'c')
        addFile(root, 'z.txt', b'z')
        return fs

    def test_walk_order(self):
        rec = Recorder()
        walk(self.getTree().getRoot(), '/', rec)

        self.eq(rec.events, [
            ('file', 'a.txt', '/'),
            ('enter', 'sub', '/'),
            ('file', 'b.txt', '/sub/'),
            ('enter', 'deep', '/sub/'),
            ('file', 'c.txt', '/sub/deep/'),
            ('exit', 'deep', '/sub/deep/'),
            ('exit', 'sub', '/sub/'),
            ('file', 'z.txt', '/'),
        ])

    def test_walk_skips_pseudo_entries(self):
        fs = self.getTree()
        sub = getDir(fs.getRoot(), 'sub')
        names = [ e.name for e in sub.iterate() ]
        self.eq(names[:2], ['.', '..'])

        rec = Recorder()
        walk(sub, '/sub/', rec)
        self.eq([ e[1] for e in rec.events ], ['b.txt', 'deep', 'c.txt', 'deep'])

    def test_walk_visitor_error(self):

        class Boom(Visitor):
            def onFile(self, entry, dest):
                if entry.name == 'b.txt':
                    raise ValueError('boom')

        self.assertRaises(ValueError, walk, self.getTree().getRoot(), '/', Boom())

    def test_walk_none_args(self):
        root = self.getTree().getRoot()
        self.assertRaises(ValueError, walk, None, '/', Visitor())
        self.assertRaises(ValueError, walk, root, None, Visitor())

    def test_walk_default_visitor(self):
        # the default marker is a joined path and nothing is touched
        walk(self.getTree().getRoot(), '/tmp/nowhere', Visitor())
