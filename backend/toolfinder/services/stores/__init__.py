"""Vector and document store implementations."""
