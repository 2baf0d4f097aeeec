"""Foundation utilities for shared infrastructure components.

This package provides shared utilities including:
- Transport chain construction with connection pooling
- Retrying transport with exponential backoff
- Request body replay buffers
- Rate limiting utilities
- Structured JSON logging
"""
