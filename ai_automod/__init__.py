"""
AI Automod.

Cost-governed AI analysis pipeline for moderating Reddit submissions.
"""

__version__ = "0.1.0"
