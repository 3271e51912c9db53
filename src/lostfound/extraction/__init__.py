"""Structured attribute extraction from item images."""
