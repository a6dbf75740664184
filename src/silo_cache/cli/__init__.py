"""silo-cache command-line interface."""
