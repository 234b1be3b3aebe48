"""
Diversification scoring.
Combines pairwise correlation and concentration into a single 0-100 score.
"""

from typing import Any, Dict, Iterable, Mapping, Optional

from analytics.calculations.concentration import distribution_evenness, concentration_shares


def diversification_components(
    coefficients: Iterable[Optional[float]],
    value_by_key: Mapping[str, Any],
    high_correlation_threshold: float = 0.7
) -> Dict[str, Any]:
    """
    Score how uncorrelated and evenly distributed a portfolio is.

    Formula: score = 100 × (1 - mean|r|) × evenness

    - mean|r| is taken over pairs that produced a coefficient; when none did,
      the correlation factor is 1 and the score reflects concentration alone
    - evenness is the HHI-normalized spread of value (0 for a single holding)

    Both factors are in [0, 1], so the score decreases monotonically with
    higher correlation and with higher concentration.

    Args:
        coefficients: Pairwise correlation coefficients (None = unknown)
        value_by_key: Position value per protocol/asset
        high_correlation_threshold: |r| above which a pair counts as highly correlated

    Returns:
        Dictionary with score, average_correlation, high_correlation_pairs,
        evenness and asset_count
    """
    known = [abs(c) for c in coefficients if c is not None]

    average_correlation = sum(known) / len(known) if known else None
    high_pairs = sum(1 for c in known if c > high_correlation_threshold)

    correlation_factor = 1.0 - average_correlation if average_correlation is not None else 1.0
    evenness = distribution_evenness(value_by_key)
    asset_count = sum(1 for share in concentration_shares(value_by_key).values() if share > 0)

    score = 100.0 * correlation_factor * evenness

    return {
        'score': max(0.0, min(100.0, score)),
        'average_correlation': average_correlation,
        'high_correlation_pairs': high_pairs,
        'evenness': evenness,
        'asset_count': asset_count,
    }
