"""Image classification against the closed item vocabulary."""
