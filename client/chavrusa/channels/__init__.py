"""Channels module - realtime push connection to the chat server."""

from .realtime import RealtimeChannel, RealtimeHandlers

__all__ = ['RealtimeChannel', 'RealtimeHandlers']
