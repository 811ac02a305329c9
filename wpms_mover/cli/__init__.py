"""Click command-line interface for the tenant mover."""
