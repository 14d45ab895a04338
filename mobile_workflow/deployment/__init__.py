"""Device catalogs, selection, readiness polling, and deployment nodes."""
