"""Core utilities and shared infrastructure.

- config: Configuration loading and validation
- constants: Named constants shared across modules
- exceptions: Custom exception hierarchy
- http: Timeout-bounded HTTP calls with a small retry budget
- cache: Injectable TTL cache capability
"""
