"""Request dependencies: authentication."""
