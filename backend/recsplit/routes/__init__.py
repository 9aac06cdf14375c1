# Routes package init
"""
RecSplit Backend — API Routes Package
=======================================

Route Inventory:
    - recordings.py:  POST   /api/recordings/{id}/split[?force=true]
                      GET    /api/recordings/{id}/segments
                      DELETE /api/recordings/{id}
    - health.py:      GET    /health

Routes stay thin: resolve the caller, call a service, shape the response.
"""
