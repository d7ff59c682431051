"""Bitwarden Keyring Meta information.
   Bitwarden Keyring exposes a Bitwarden vault as a freedesktop.org
   Secret Service on the session bus.
"""
__title__ = 'bitwarden_keyring'
__description__ = (
   'Bitwarden Keyring exposes a Bitwarden vault as a freedesktop.org '
   'Secret Service on the session bus.'
)
__version__ = '0.4.0'
__copyright__ = 'Copyright (c) 2024 Bitwarden Keyring contributors'
__author__ = 'Bitwarden Keyring contributors'
__author_email__ = ''
__license__ = 'Apache-2.0'
__url__ = 'https://github.com/joe/bitwarden-keyring'
