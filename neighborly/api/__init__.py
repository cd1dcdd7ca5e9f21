"""HTTP API for triggering and previewing digests."""
