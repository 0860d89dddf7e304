"""Format-specific CSV adapters."""
