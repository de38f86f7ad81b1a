"""
Core job execution engine.
Contains backoff, lease, retry/dead-letter and job management logic.
"""
