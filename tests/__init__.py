"""
Anxiety Companion Tests

Running Tests:
    # Run all tests
    pytest -v

    # Unit tests only
    pytest tests/unit -v

    # API tests (in-process FastAPI app, in-memory store)
    pytest tests/test_api_conversations.py -v

Test Coverage:
    - Heuristic classifier branches and determinism
    - Remote analysis client outcomes (mocked Claude client)
    - Remote-then-fallback orchestration
    - Crisis detection and the escalation gate
    - Reply composition and language detection
    - Conversation pipeline ordering, duplicates and supersession
    - Message stores (in-memory and SQLite) and background writes
    - HTTP endpoints
"""
