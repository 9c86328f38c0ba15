"""
Shared utilities for the crawler engine
"""
