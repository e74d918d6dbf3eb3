"""
ThesisMaster Backend - Services Layer
======================================

What:  Persistence and integration boundary between routes (HTTP) and the
       pure domain rules.

Service Inventory:
    - ChapterService: chapters, revisions, feedback, attachments, pricing quotes
    - PaymentService: payments and their chapter side effects
    - WriterService: claiming chapters, writer status updates, earnings, payouts
    - DashboardService: student dashboard aggregates
    - AdminService: platform-wide payments, chapters and statistics
    - FileService: attachment validation, storage and cleanup
    - PaymentGateway (abstract) / SimulatedPaymentGateway: charging payments
"""
