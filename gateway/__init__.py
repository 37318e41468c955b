"""Payment gateway transaction lifecycle service."""
