"""
Core utilities package.
"""
