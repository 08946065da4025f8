"""
Conformance Test Suite

This suite defines the NORMATIVE behavior of the pawn loan ledger.
Any compliant implementation MUST pass these tests.

The tests are organized by invariant:
1. invariants.py - Balance and total consistency of every stored loan
2. atomicity.py - Rejected operations leave the book unchanged
3. determinism.py - Same seed and operations give the same book
4. concurrency.py - Per-loan serialization and optimistic versioning

These tests use hypothesis for property-based testing.
"""
