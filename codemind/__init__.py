"""
codemind - Semantic Memory for an AI Coding Assistant

This package turns code, decisions, conversations and style observations
into vector memories, recalls them by meaning, and decides which ones are
worth keeping.
"""

__version__ = "1.0.0"
