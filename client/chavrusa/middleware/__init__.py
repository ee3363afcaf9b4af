"""Middleware module - request/response logging hooks for outgoing HTTP calls."""

from .logging_middleware import build_event_hooks, log_request, log_response

__all__ = ['build_event_hooks', 'log_request', 'log_response']
