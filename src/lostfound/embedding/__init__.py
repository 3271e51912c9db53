"""Semantic similarity scoring between claim and item text."""
