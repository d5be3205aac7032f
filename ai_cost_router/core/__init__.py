"""
Core modules for AI Cost Router.

This package contains admission control, caching, model selection,
cost accounting and the request dispatcher.
"""
