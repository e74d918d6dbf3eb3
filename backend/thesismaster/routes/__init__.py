"""
ThesisMaster Backend - API Routes Package
==========================================

Route Inventory:
    - health.py:     GET  /health
    - pricing.py:    GET  /api/pricing/quote
    - chapters.py:   /api/chapters, feedback and attachments
    - payments.py:   /api/payments, including /process
    - dashboard.py:  GET  /api/dashboard/stats
    - writer.py:     /api/writer chapters, earnings and payouts
    - admin.py:      /api/admin stats, payment actions, chapter oversight

Routes stay thin: read the request, call a service, shape the response.
"""
