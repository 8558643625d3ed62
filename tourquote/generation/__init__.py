"""Estimate generation pipeline."""
