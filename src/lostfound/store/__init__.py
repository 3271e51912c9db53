"""Record store package for lostfound.

Table definitions, engine wiring and the store classes that read and write
found items, enrichments, claims, checkpoints and AI usage rows.
"""
