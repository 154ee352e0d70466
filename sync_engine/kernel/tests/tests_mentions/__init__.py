"""
Sync Kernel Mentions Test Suite

Test Files:
1. test_parse_mentions.py - Plain text → rich text, outgoing payload
2. test_extract_mentions.py - Rich text → mentioned ids, html runs
3. test_replies.py - Reply detection and fallback stripping
"""
