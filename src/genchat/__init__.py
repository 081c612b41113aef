"""Realtime presence, messaging and call signalling core."""
