"""Messaging client boundary."""
