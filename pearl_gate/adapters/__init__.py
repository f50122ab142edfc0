"""Integration adapters.

Adapters connect the link service to external systems (currently Discord).
"""
