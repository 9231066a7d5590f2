"""Backend services: extraction, geocoding, distances and page fetching."""
