"""
Infrastructure layer - external service integrations.

Each subdirectory wraps an external dependency:
- postgres: Marketplace database access (psycopg2)
- paystack: Paystack API and webhook delivery (httpx)

These wrappers translate between external formats and our domain models.
"""
