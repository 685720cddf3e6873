"""
Core package for Silo: logging and the client-side conversation core.
"""
