"""Shared helpers: logging, retry and bounded concurrency."""
