"""SkyDeck Session Meta information.
   SkyDeck Session keeps AT Protocol logins alive and their credentials
   encrypted on local disk.
"""
__title__ = 'skydeck_session'
__description__ = (
   'SkyDeck Session manages AT Protocol sessions and stores '
   'their credentials encrypted on disk.'
)
__version__ = '0.3.0'
__copyright__ = 'Copyright (c) 2024 SkyDeck Authors'
__author__ = 'SkyDeck Authors'
__author_email__ = 'dev@skydeck.app'
__license__ = 'Apache-2.0'
__url__ = 'https://github.com/skydeck/skydeck-session'
