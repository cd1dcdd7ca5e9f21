"""Generative-text service adapters."""
