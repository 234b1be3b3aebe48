"""
Risk & correlation engine.

Turns per-token return series and protocol positions into pairwise
correlation with significance, volatility decomposition, protocol exposure
and a portfolio diversification score. Every function is pure; small samples
are reported through None fields rather than raised.
"""

import logging
import math
from datetime import datetime, timezone
from itertools import combinations
from typing import Any, Dict, Iterable, List, Mapping, Optional

import numpy as np
import pandas as pd

from analytics.calculations.concentration import concentration_pct
from analytics.calculations.correlation import (
    align_series,
    classify_strength,
    correlation_p_value,
    pearson,
    to_return_series,
)
from analytics.calculations.diversification import diversification_components
from analytics.calculations.volatility import realized_vol, semi_deviation
from analytics.config import AnalyticsConfig
from analytics.guardrails import InputValidationError, validate_finite_returns
from analytics.models import (
    CorrelationPair,
    DiversificationScore,
    ExposureAssessment,
    RiskLevel,
    VolatilityProfile,
)

logger = logging.getLogger(__name__)


def correlate(
    token_a: str,
    token_b: str,
    returns_a: Any,
    returns_b: Any,
    min_sample_size: Optional[int] = None,
    *,
    computed_at: Optional[datetime] = None,
    config: Optional[AnalyticsConfig] = None
) -> CorrelationPair:
    """
    Pearson correlation between two tokens' return series.

    Series are aligned on their timestamps (inner join) before anything is
    computed. Tokens are put in lexicographic order so that (A, B) and (B, A)
    produce the same pair.

    Args:
        token_a: First token id
        token_b: Second token id
        returns_a: Returns of token_a (Series, mapping or (timestamp, value) pairs)
        returns_b: Returns of token_b
        min_sample_size: Minimum aligned observations (defaults to config)
        computed_at: Stamp for the result (defaults to now, UTC)
        config: Engine configuration (significance level, sample size)

    Returns:
        CorrelationPair; coefficient and p_value are None when the sample is
        too small or either series is constant

    Raises:
        InputValidationError: If either series contains non-finite values
    """
    config = config or AnalyticsConfig()
    min_sample_size = min_sample_size if min_sample_size is not None else config.min_correlation_sample_size
    computed_at = computed_at or datetime.now(timezone.utc)

    series_a = to_return_series(returns_a, f"returns for {token_a}")
    series_b = to_return_series(returns_b, f"returns for {token_b}")

    if token_b < token_a:
        token_a, token_b = token_b, token_a
        series_a, series_b = series_b, series_a

    x, y = align_series(series_a, series_b)
    sample_size = len(x)

    coefficient = None
    p_value = None

    if sample_size < min_sample_size:
        logger.debug(
            f"{token_a}/{token_b}: {sample_size} aligned returns, "
            f"need {min_sample_size}; correlation not computed"
        )
    else:
        coefficient = pearson(x, y)
        if coefficient is None:
            logger.debug(f"{token_a}/{token_b}: constant return series, correlation undefined")
        else:
            p_value = correlation_p_value(coefficient, sample_size)

    return CorrelationPair(
        token_a=token_a,
        token_b=token_b,
        coefficient=coefficient,
        p_value=p_value,
        sample_size=sample_size,
        significant=p_value is not None and p_value < config.significance_level,
        computed_at=computed_at,
        strength=classify_strength(coefficient),
    )


def correlation_matrix(
    returns_by_token: Mapping[str, Any],
    min_sample_size: Optional[int] = None,
    *,
    computed_at: Optional[datetime] = None,
    config: Optional[AnalyticsConfig] = None
) -> List[CorrelationPair]:
    """
    Correlate every unordered pair of tokens.

    Returns:
        One CorrelationPair per pair, ordered by (token_a, token_b)
    """
    config = config or AnalyticsConfig()
    computed_at = computed_at or datetime.now(timezone.utc)

    series = {
        token: to_return_series(returns, f"returns for {token}")
        for token, returns in returns_by_token.items()
    }

    return [
        correlate(
            token_a, token_b, series[token_a], series[token_b],
            min_sample_size, computed_at=computed_at, config=config
        )
        for token_a, token_b in combinations(sorted(series), 2)
    ]


def summarize_correlations(
    pairs: Iterable[CorrelationPair],
    high_correlation_threshold: Optional[float] = None,
    config: Optional[AnalyticsConfig] = None
) -> Dict[str, Any]:
    """
    Summarize a correlation matrix.

    Returns:
        Dictionary with pair_count, scored_pairs, average_correlation (mean |r|
        over pairs with a coefficient), high_correlation_pairs and
        significant_pairs
    """
    config = config or AnalyticsConfig()
    threshold = high_correlation_threshold if high_correlation_threshold is not None \
        else config.high_correlation_threshold

    pairs = list(pairs)
    known = [abs(p.coefficient) for p in pairs if p.coefficient is not None]

    return {
        'pair_count': len(pairs),
        'scored_pairs': len(known),
        'average_correlation': sum(known) / len(known) if known else None,
        'high_correlation_pairs': sum(1 for c in known if c > threshold),
        'significant_pairs': sum(1 for p in pairs if p.significant),
    }


def _return_values(returns: Any, scope: str) -> np.ndarray:
    # Plain sequences of floats are taken as already ordered
    if isinstance(returns, (pd.Series, dict)):
        return to_return_series(returns, f"returns for {scope}").to_numpy(dtype='float64')

    items = list(returns)
    if items and isinstance(items[0], (tuple, list)):
        return to_return_series(items, f"returns for {scope}").to_numpy(dtype='float64')

    return validate_finite_returns(items, f"returns for {scope}")


def volatility_profile(
    scope: str,
    returns: Any,
    rolling_window: Optional[int] = None,
    config: Optional[AnalyticsConfig] = None
) -> VolatilityProfile:
    """
    Decompose the volatility of a return series.

    - upside/downside deviation: population std of returns above/below the
      mean, annualized
    - rolling volatility: annualized std of the most recent ``rolling_window``
      returns (all of them when fewer are available)
    - risk category: rolling volatility bucketed by the configured thresholds

    Args:
        scope: Token or portfolio id
        returns: Chronological returns (sequence, Series, mapping or pairs)
        rolling_window: Look-back in returns (defaults to config)
        config: Engine configuration

    Returns:
        VolatilityProfile; rolling volatility and category are None with
        fewer than 2 returns

    Raises:
        InputValidationError: If returns contain NaN or infinite values, or
            the rolling window is shorter than 2
    """
    config = config or AnalyticsConfig()
    window = rolling_window if rolling_window is not None else config.rolling_volatility_window
    if window < 2:
        raise InputValidationError(f"rolling_window must be >= 2, got {window}")
    annualize = config.annualization_days

    ret = _return_values(returns, scope)
    sample_size = len(ret)

    volatility = None
    rolling = None
    category = None

    if sample_size >= 2:
        volatility = float(np.std(ret, ddof=0) * math.sqrt(annualize))
        rolling = realized_vol(ret, min(window, sample_size), annualize=annualize)
        category = config.volatility_thresholds.classify(rolling)
    else:
        logger.debug(f"{scope}: {sample_size} returns, rolling volatility not computed")

    return VolatilityProfile(
        scope=scope,
        upside_deviation=semi_deviation(ret, 'upside', annualize=annualize),
        downside_deviation=semi_deviation(ret, 'downside', annualize=annualize),
        rolling_volatility=rolling,
        risk_category=category,
        volatility=volatility,
        sample_size=sample_size,
    )


def exposure(
    protocol_id: str,
    protocol_value: Any,
    portfolio_total: Any,
    limits: Optional[Mapping[RiskLevel, float]] = None,
    config: Optional[AnalyticsConfig] = None
) -> ExposureAssessment:
    """
    Assess how concentrated a portfolio is in one protocol.

    Args:
        protocol_id: Protocol identifier
        protocol_value: USD value held in the protocol
        portfolio_total: Total USD value of the portfolio
        limits: Allocation cap per risk level (defaults to config)
        config: Engine configuration (concentration thresholds)

    Returns:
        ExposureAssessment with concentration as a fraction (0 when the
        portfolio is empty) and the recommended cap for its risk level

    Raises:
        InputValidationError: If either value is negative or non-finite, or
            the protocol value exceeds the portfolio total
    """
    config = config or AnalyticsConfig()
    limits = limits if limits is not None else config.allocation_limits

    pct = concentration_pct(protocol_value, portfolio_total)
    level = config.concentration_thresholds.classify(pct)

    return ExposureAssessment(
        protocol_id=protocol_id,
        concentration_pct=pct,
        risk_level=level,
        recommended_allocation_limit=limits[level],
        exposure_usd=float(protocol_value),
    )


def exposures(
    value_by_protocol: Mapping[str, Any],
    config: Optional[AnalyticsConfig] = None
) -> List[ExposureAssessment]:
    """
    Assess every protocol of a portfolio.

    Returns:
        ExposureAssessments sorted by concentration descending, ties by protocol id
    """
    config = config or AnalyticsConfig()
    total = sum(float(v) for v in value_by_protocol.values())

    assessments = [
        exposure(protocol_id, value, total, config=config)
        for protocol_id, value in value_by_protocol.items()
    ]
    return sorted(assessments, key=lambda e: (-e.concentration_pct, e.protocol_id))


def diversification_score(
    portfolio_id: str,
    pairs: Iterable[CorrelationPair],
    concentration_by_protocol: Mapping[str, Any],
    computed_at: Optional[datetime] = None,
    config: Optional[AnalyticsConfig] = None
) -> DiversificationScore:
    """
    Aggregate correlation and concentration into a 0-100 score.

    Pairs without a coefficient are ignored. Higher average correlation or
    higher concentration always lowers the score.

    Args:
        portfolio_id: Portfolio identifier
        pairs: Correlation pairs between the portfolio's tokens
        concentration_by_protocol: Value (or share) held per protocol
        computed_at: Stamp for the result (defaults to now, UTC)
        config: Engine configuration (high correlation threshold)

    Returns:
        DiversificationScore in [0, 100]
    """
    config = config or AnalyticsConfig()
    computed_at = computed_at or datetime.now(timezone.utc)

    components = diversification_components(
        [p.coefficient for p in pairs],
        concentration_by_protocol,
        high_correlation_threshold=config.high_correlation_threshold,
    )

    return DiversificationScore(
        portfolio_id=portfolio_id,
        score=components['score'],
        computed_at=computed_at,
        average_correlation=components['average_correlation'],
        high_correlation_pairs=components['high_correlation_pairs'],
        evenness=components['evenness'],
        asset_count=components['asset_count'],
    )
