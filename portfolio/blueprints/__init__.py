"""
Project Closure Platform
Blueprint registry.
"""
