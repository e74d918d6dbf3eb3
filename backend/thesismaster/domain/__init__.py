"""
Pure business rules: pricing, payment status transitions, writer earnings.

Nothing in this package touches the database, the file system or HTTP.
"""
