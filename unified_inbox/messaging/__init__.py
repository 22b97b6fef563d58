"""Normalized messages and the storage path shared by every channel."""
