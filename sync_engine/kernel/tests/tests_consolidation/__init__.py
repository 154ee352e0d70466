"""
Sync Kernel Consolidation Test Suite

Test Files:
1. test_consolidate_payments.py - Payment chains → one row, idempotence
2. test_multispend.py - Hidden sub-kinds, group roles, status parsing
3. test_receivable.py - Claimable payments, read path
"""
