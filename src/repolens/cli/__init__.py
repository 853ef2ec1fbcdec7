"""repolens command-line interface."""
