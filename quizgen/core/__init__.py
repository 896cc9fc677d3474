"""
Core modules for quizgen.

This package contains usage metering, quiz attempts, the quiz library
and sign-in bookkeeping.
"""
