"""Command-line interface for CMS Bridge."""
