"""
Utilities Package.
"""
