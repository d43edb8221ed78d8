"""
Workflows module - collection dispatch and the single-flight processing runner.
"""
