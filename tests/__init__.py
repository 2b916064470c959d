"""
Test suite for the allocation optimizer.

Run all tests: pytest
Run unit tests only: pytest tests/unit/
Run specific file: pytest tests/unit/test_allocation_utilities_service.py -v
"""
