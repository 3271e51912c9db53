"""Blob storage adapters for found-item images."""
