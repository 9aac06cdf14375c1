# Middleware package init
"""
RecSplit Backend — Middleware Package
=======================================

Request → [Request ID] → [Access log] → [GZip] → [CORS] → Route Handler

    - request_id.py:  X-Request-ID correlation, stored in a ContextVar
    - logging.py:     one access-log line per request, level by status
"""
