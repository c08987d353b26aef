"""
Storage layer for AI Automod.

Key-value store primitives and key naming shared by every component.
"""
