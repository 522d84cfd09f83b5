"""News headline ingestion pipeline."""
