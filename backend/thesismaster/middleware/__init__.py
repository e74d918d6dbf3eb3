"""
ThesisMaster Backend - Middleware Package
==========================================

What:  Cross-cutting concerns applied to every request.

Middleware Chain (outermost first, as registered in main.create_app):
    Request → [Rate Limit] → [Request ID] → [Logging] → [GZip] → [CORS] → Route Handler

    - Rate Limit rejects abusive callers before any processing
    - Request ID sets the correlation id used by every later log line
    - Logging records status and duration on the way out
"""
