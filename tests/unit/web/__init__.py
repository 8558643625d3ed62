"""Unit tests for tourquote web route modules.

Structure:
    tests/unit/web/
    ├── test_routes_estimates.py     # Generation and lifecycle routes
    └── test_routes_events.py        # Event stream and replay routes

Testing pattern:
    - Use FastAPI's TestClient for route testing
    - Mock the service layer stored on app.state
    - Test request/response validation
    - Test error mapping
"""
