"""
Core modules for AI Automod.

Contains the cost-governed analysis pipeline: sanitization, validation,
circuit breaking, budget tracking, coalescing, caching and provider selection.
"""
