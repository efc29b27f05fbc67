"""Messaging provider interface and adapters."""

from tuicord.providers.base import MessagingProvider

__all__ = ["MessagingProvider"]
