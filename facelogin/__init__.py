"""Face descriptor login demo service."""
