'''
Back up files from USB mass-storage devices.
'''
__version__ = (0, 1, 0)
