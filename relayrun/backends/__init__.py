"""
Backends connect bots to the networks they live on.
"""
