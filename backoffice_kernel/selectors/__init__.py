"""Read-only selectors returning frozen DTOs."""
