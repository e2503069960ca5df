"""
Conformance Test Suite

This suite defines the NORMATIVE behavior of the loan ledger.
Any compliant implementation MUST pass these tests.

The tests are organized by invariant:
1. conservation.py - Value is conserved; escrow equals posted collateral
2. atomicity.py - A loan call commits completely or changes nothing
3. temporal.py - Due-date rules and time ordering

These tests use hypothesis for property-based testing.
"""
