"""
Utility helpers for logging and file persistence.
"""
