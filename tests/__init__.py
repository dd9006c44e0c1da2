"""
Test suite for Shopify Inventory Sync.

Run all tests: pytest
Run with coverage: pytest --cov=. --cov-report=html
Run unit tests only: pytest tests/unit/
Run specific file: pytest tests/unit/test_sync_service.py -v
"""
