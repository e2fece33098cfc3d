"""
Backend package for the market insights site.

This package provides a FastAPI application that serves the built
single-page bundle plus a JSON API over the hosted table store, object
storage, change feed and auth service, with in-memory doubles for each.
"""
