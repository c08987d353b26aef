"""
Configuration for AI Automod.

Loads the read-only YAML configuration consumed by the analysis core.
"""
