"""
Command-line interface for AI Automod.
"""
