"""xetpl CLI commands."""
