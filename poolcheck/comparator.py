"""
comparator.py - Output comparison and alert severity scoring.

Addresses must match exactly; values may drift within VALUE_TOLERANCE of
the approved amount (fees and subsidy rounding move them block to block).
An address substitution is the hijack signature, so address mismatches
always outrank value-only differences.
"""

from typing import List

from poolcheck.records import AlertSeverity, BitcoinOutput, ComparisonResult

VALUE_TOLERANCE = 0.05


def compare_outputs(actual: List[BitcoinOutput], approved: List[BitcoinOutput]) -> ComparisonResult:
    """Return the first violation in index order, or a match."""
    if len(actual) != len(approved):
        return ComparisonResult(
            matches=False,
            reason=f"Output count mismatch: expected {len(approved)}, got {len(actual)}",
        )

    for index, (got, expected) in enumerate(zip(actual, approved)):
        if got.address != expected.address:
            return ComparisonResult(
                matches=False,
                reason=f"Output {index} address mismatch: expected {expected.address}, got {got.address}",
            )

        threshold = int(expected.value_satoshis * VALUE_TOLERANCE)
        if abs(got.value_satoshis - expected.value_satoshis) > threshold:
            return ComparisonResult(
                matches=False,
                reason=(f"Output {index} value mismatch: expected ~{expected.value_btc:.8f} BTC, "
                        f"got {got.value_btc:.8f} BTC"),
            )

    return ComparisonResult(matches=True)


def classify_severity(actual: List[BitcoinOutput], approved: List[BitcoinOutput]) -> AlertSeverity:
    if len(actual) != len(approved):
        return AlertSeverity.CRITICAL

    address_mismatches = 0
    value_mismatches = 0
    for got, expected in zip(actual, approved):
        if got.address != expected.address:
            address_mismatches += 1
        elif got.value_satoshis != expected.value_satoshis:
            value_mismatches += 1

    # Majority rule applies to multi-output payouts; a single swapped
    # address on a solo payout is reported as HIGH.
    if len(actual) > 1 and address_mismatches * 2 > len(actual):
        return AlertSeverity.CRITICAL
    if address_mismatches > 0:
        return AlertSeverity.HIGH
    if value_mismatches > 1:
        return AlertSeverity.MEDIUM
    return AlertSeverity.LOW
