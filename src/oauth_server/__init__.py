"""OAuth server - authorization codes, signed access tokens, refresh rotation.

Drives the Sonos account link: the interactive authorize step, the token
endpoint, and bearer validation for the SMAPI and streaming endpoints.
"""

from oauth_server.store import TTLStore
from oauth_server.tokens import TokenService
from oauth_server.users import InMemoryUserDirectory, UserDirectory

__all__ = [
    "TTLStore",
    "TokenService",
    "InMemoryUserDirectory",
    "UserDirectory",
]
