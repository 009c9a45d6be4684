"""
Shared utilities package
"""
