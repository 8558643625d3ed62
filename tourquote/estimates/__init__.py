"""Estimate lifecycle and post-commit side effects."""
