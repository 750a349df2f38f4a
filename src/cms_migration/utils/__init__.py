"""Shared utilities for CMS Bridge."""
