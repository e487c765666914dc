"""FastAPI application module for alsupdate.

This module contains the inspection service that exposes the currently
active factor model, its descriptor and the update pipeline metrics.
"""
