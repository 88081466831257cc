# =============================================================================
# tests/ - Test Suite
# =============================================================================
# Unit and route tests for the Stager API. Database access goes through the
# in-memory Supabase stand-in from conftest.py; Stripe, Replicate, Redis
# and the queue are patched per test.
#
# Run tests with: pytest
# =============================================================================
