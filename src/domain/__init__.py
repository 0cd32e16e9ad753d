"""
Domain layer for trigger resolution business logic.

This layer contains:
- Data models (type-safe structures)
- Trigger scanning, collection and aggregation
- Mailbox and tag resolution
- Message processing pipeline (explicit success/failure results)
"""
