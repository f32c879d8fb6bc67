"""
Takeoff listings backend.

This package provides a FastAPI application for construction takeoff
listings, with pluggable document store, media store and upload strategy
so the same code runs on a regular host or a read-only serverless one.
"""
