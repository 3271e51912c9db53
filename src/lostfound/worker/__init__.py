"""Batch jobs for the lostfound pipeline."""
