"""
Sync Kernel Diff Test Suite

Test Files:
1. test_diffs_kinds.py - Each of the eleven diff kinds, bounds violations
2. test_diffs_parse.py - Wire form → Diff, malformed payloads
3. test_diffs_determinism.py - Chunking invariance, map_diff commutation
"""
