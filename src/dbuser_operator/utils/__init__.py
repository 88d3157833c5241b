"""
Utils package - Utility modules for database user operator functionality.

Contains helper modules for:
- Remote administration API access with rate limiting and circuit breaking
- Kubernetes resource and secret management
- Retry and time handling helpers
"""
