"""Closeout and commission services used by the route modules."""
