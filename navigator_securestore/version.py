"""Navigator SecureStore Meta information.
   Navigator SecureStore keeps application objects encrypted at rest,
   bound to the device and user that wrote them.
"""
__title__ = 'navigator_securestore'
__description__ = (
   'Navigator SecureStore keeps application objects and values '
   'encrypted at rest with a device-bound master secret.'
)
__version__ = '0.3.0'
__copyright__ = 'Copyright (c) 2023 Jesus Lara'
__author__ = 'Jesus Lara'
__author_email__ = 'jesuslarag@gmail.com'
__license__ = 'Apache-2.0'
__url__ = 'https://github.com/phenobarbital/navigator-securestore'
