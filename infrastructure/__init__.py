"""
Infrastructure layer - configuration, monitoring, resilience and storage.
"""
