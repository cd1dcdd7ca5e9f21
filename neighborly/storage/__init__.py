"""Local storage adapters for digest collaborators."""
