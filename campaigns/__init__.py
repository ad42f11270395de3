"""
Campaigns - batch jobs run against external systems.
"""
