"""
Terminal rendering.
"""
