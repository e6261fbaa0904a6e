import collections

class OnDemand(collections.defaultdict):

    def __init__(self):
        collections.defaultdict.__init__(self)
        self._ondem_ctors = {}

    def add(self, name, ctor, *args, **kwargs):
        '''
        Add an on-demand parser callback.

        Example:

            class BootLab(DiskLab):

                def __init__(self, disk):
                    DiskLab.__init__(self, disk)
                    self.add('boot:oem', self._getOemName)

                def _getOemName(self):
                    return self.readAtOff(3, 8)

            lab = BootLab(disk)
            print(lab.get('boot:oem'))
        '''
        self._ondem_ctors[name] = (ctor,args,kwargs)

    def get(self, name, defval=None):
        '''
        Retrieve (and cache) the results of an on-demand parser callback.
        '''
        retn = self[name]
        if retn is None:
            retn = defval
        return retn

    def set(self, name, valu):
        '''
        Set an explicit value in the on-demand dict.
        '''
        self[name] = valu

    def __missing__(self, key):
        ctor = self._ondem_ctors.get(key)
        if ctor is None:
            raise KeyError(key)

        meth,args,kwargs = ctor
        valu = meth(*args,**kwargs)
        self[key] = valu
        return valu

HEX_ROW = 16

def _hexrow(byts, off):
    hexs = []
    for i,b in enumerate(byts):
        sep = '-' if i == (HEX_ROW // 2) - 1 else ' '
        hexs.append('%.2x%s' % (b,sep))

    asc = ''.join([ chr(b) if 0x20 <= b <= 0x7e else '.' for b in byts ])
    return '%.4x - %s  %s' % (off, ''.join(hexs).ljust(HEX_ROW * 3), asc)

def hexdump(byts):
    '''
    Render bytes the way packet monitors do.

    Example:

        print( hexdump(b'USBC\\x01\\x00\\x00\\x00') )

        0000 - 55 53 42 43 01 00 00 00-                          USBC....

    Notes:

        * consecutive all-zero rows are collapsed into the first one

    '''
    lines = []
    lastzero = False
    for off in range(0, len(byts), HEX_ROW):
        row = byts[off:off+HEX_ROW]
        zero = len(row) == HEX_ROW and not any(row)
        if zero and lastzero:
            continue

        lastzero = zero
        lines.append(_hexrow(row, off))

    return '\n'.join(lines)

def colify(rows,titles=None):
    '''
    Generate column text output from rows of strings.

    Example:

        rows = [
            ('/DCIM/a.jpg','5120'),
            ('/b.jpg','1024'),
        ]

        print( colify( rows, titles=('path','size') ))

    '''
    if not rows and not titles:
        return ''

    allrows = list(rows)
    if titles:
        allrows.append(titles)

    colcount = max([ len(r) for r in allrows ])
    colsizes = [ max([ len(r[i]) for r in allrows if i < len(r) ]) for i in range(colcount) ]

    def fmtrow(row):
        return ' | '.join([ row[i].ljust(colsizes[i]) for i in range(len(row)) ])

    bar = '-' * (sum(colsizes) + 3 * colcount)

    lines = [ bar ]
    if titles:
        lines.append( fmtrow(titles) )
        lines.append( bar )

    lines.extend([ fmtrow(r) for r in rows ])
    lines.append( bar )
    return '\n'.join(lines)
