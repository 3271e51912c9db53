"""Pipeline services: enrichment, matching, monitoring and wiring factories."""
