"""
localrag: a fully local retrieval engine for grounding generated answers.
"""

__version__ = "0.1.0"
