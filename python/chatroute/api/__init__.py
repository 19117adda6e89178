"""API package for chatroute."""
