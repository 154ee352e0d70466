"""
Sync Kernel Content Test Suite

Test Files:
1. test_content_validation.py - Per-kind acceptance, forward compatibility
2. test_content_fallback.py - Unknown coercion and validator totality
"""
