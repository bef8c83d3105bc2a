"""
Common utilities and configurations for the agenda services.
"""
