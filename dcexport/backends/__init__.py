"""
DCExport Backend System

Collaborators the export core talks to:
- DiscordBackend: remote API client (guilds, channels, roles, members, users)
- Transport / ResilientTransport: raw asset fetches with retry and backoff
"""

from .base import DiscordBackend
from .http import Transport, ResilientTransport, FetchedResource

__all__ = [
    "DiscordBackend",
    "Transport",
    "ResilientTransport",
    "FetchedResource"
]
