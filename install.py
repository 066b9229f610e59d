# installer for the Arexx TL-500 driver
# Copyright 2015 Luc Heijst, Matthew Wall

from weecfg.extension import ExtensionInstaller


def loader():
    return TL500Installer()


class TL500Installer(ExtensionInstaller):
    def __init__(self):
        super(TL500Installer, self).__init__(
            version="0.1",
            name='tl500',
            description='Collect data from Arexx TL-500 logging systems',
            author="Luc Heijst",
            author_email="ljm.heijst@gmail.com",
            config={
                'TL500': {
                    'model': 'Arexx TL-500',
                    'driver': 'user.tl500',
                    'polling_interval': '10',
                    'debug_comm': '0'}},
            files=[('bin/user',
                    ['bin/user/tl500.py']),
                   ]
            )
