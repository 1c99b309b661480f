"""Shared helpers: logging, HTTP and checksums."""
