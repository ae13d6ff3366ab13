"""
Conformance Test Suite

This suite defines the NORMATIVE behavior of the slot economy engine.
Any compliant implementation MUST pass these tests.

The tests are organized by invariant:
1. currency_conservation.py - Player and house balances net to zero
2. all_or_nothing.py - Rejected operations leave no partial state
3. grant_idempotence.py - Achievements once per account, bonus once per day
4. replay_determinism.py - Same inputs give the same transaction log
5. no_drift.py - Lots, stats and balance snapshots agree with the log

These tests use hypothesis for property-based testing over random
operation scripts (see strategies.py).
"""
