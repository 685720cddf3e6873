"""
Test suite for the Silo client core.
"""
