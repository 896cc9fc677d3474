"""
SDK for quizgen.

Provides the quota-metered AI quiz generator.
"""

from .openai_client import MeteredQuizGenerator

__all__ = ["MeteredQuizGenerator"]
