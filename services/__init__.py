"""
Clients for remote generation services
"""
