"""enrollment-sync test suite.

Unit tests live in tests/unit, one module per library module. HTTP is served
in-process through httpx.MockTransport (see FakeAcademicApi in conftest.py).
"""
