"""Transactional email adapters."""
