"""HTTP transport shared by external API services."""
