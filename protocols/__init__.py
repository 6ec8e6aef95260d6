"""
Industrial protocol implementations.
"""
