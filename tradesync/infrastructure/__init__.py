"""Infrastructure layer: storage and venue adapters."""
