"""
Procurement Portal
Blueprint registry.
"""
