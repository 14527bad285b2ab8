"""FinOps services: billing engine, ingestion, cache and HTTP API."""
