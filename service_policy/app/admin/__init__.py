"""
Administrative operations package.
"""
