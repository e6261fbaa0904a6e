#!/usr/bin/env python
from setuptools import setup,find_packages

# For Testing:
#
# python3 -m unittest discover -s usbbackup/tests -t .
#
# For Realz:
#
# python3 setup.py bdist_wheel
# python3 -m pip install dist/usbbackup-*.whl

import usbbackup

setup(
    name='usbbackup',
    version='.'.join( str(v) for v in usbbackup.__version__ ),
    description='Back up the FAT partition of USB mass-storage devices over Bulk-Only Transport',
    license='Apache License 2.0',

    packages=find_packages(exclude=['*.tests','*.tests.*']),

    install_requires=[
        'vstruct2>=2.0.2',
        'pyusb>=1.0.0',
    ],

    classifiers=[
        'License :: OSI Approved :: Apache Software License',
        'Programming Language :: Python :: 3',
    ],

)
