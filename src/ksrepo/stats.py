"""
Statistical functions for ksRepo: the Kolmogorov-Smirnov enrichment
statistic, its resampled null distribution and multiple-testing correction.
"""

from typing import Dict, Optional
import hashlib

import numba as nb
import numpy as np
from statsmodels.stats.multitest import multipletests


#  Core numba-optimised functions for inner loops

@nb.njit
def _ks_statistic(ranks, n_total):
    """
    Signed one-sample KS statistic of sorted 0-based ranks within a list
    of ``n_total`` genes.

    With 1-based positions V_1 < ... < V_k:
        a = max_j (j/k - V_j/N),  b = max_j (V_j/N - (j-1)/k)
    and the statistic is ``a`` if a > b, else ``-b``.
    """
    k = len(ranks)
    if k == 0 or k >= n_total:
        return 0.0

    a = -np.inf
    b = -np.inf
    for j in range(k):
        position = (ranks[j] + 1) / n_total
        upper = (j + 1) / k - position
        lower = position - j / k
        if upper > a:
            a = upper
        if lower > b:
            b = lower

    if a > b:
        return a
    return -b


@nb.njit
def _draw_from_pool(pool, k):
    """
    Draw ``k`` distinct entries of ``pool`` with Floyd's algorithm and
    return them sorted. Uses the thread-local numba generator.

    Memory and time are O(k), independent of the pool size. ``k`` must be
    at least 1.
    """
    m = len(pool)
    out = np.empty(k, dtype=np.int64)

    # The first draw cannot collide
    t = np.random.randint(0, m - k + 1)
    taken = {t}
    out[0] = pool[t]
    idx = 1
    for j in range(m - k + 1, m):
        t = np.random.randint(0, j + 1)
        if t in taken:
            t = j
        taken.add(t)
        out[idx] = pool[t]
        idx += 1
    out.sort()
    return out


@nb.njit(parallel=True)
def _null_distribution(pool, k, n_total, seeds):
    """
    Score one resample per seed with parallel execution.

    Each iteration reseeds the generator of the thread running it, so the
    value for resample ``b`` depends only on ``seeds[b]``.
    """
    n_resamples = len(seeds)
    results = np.zeros(n_resamples)

    for b in nb.prange(n_resamples):
        np.random.seed(seeds[b])
        results[b] = _ks_statistic(_draw_from_pool(pool, k), n_total)

    return results


@nb.njit
def _count_at_least(observed, null_scores):
    """Count how many null scores are greater than or equal to the observed score."""
    count = 0
    for i in range(len(null_scores)):
        if null_scores[i] >= observed:
            count += 1
    return count


def ks_statistic(ranks, n_total: int) -> float:
    """
    Compute the enrichment statistic for one compound.

    Positive values mean the compound's genes sit towards the top (most
    significant end) of the list, negative values towards the bottom. A
    top-k prefix scores the maximum, ``1 - k/n_total``. A compound covering
    the whole list, or no genes at all, scores 0.

    Args:
        ranks: 0-based ranks of the compound's genes in the list
        n_total: Length of the gene list

    Returns:
        Enrichment statistic as float
    """
    ranks = np.sort(np.asarray(ranks, dtype=np.int64))
    if len(ranks) and (ranks[0] < 0 or ranks[-1] >= n_total):
        raise ValueError(f"Ranks must lie in [0, {n_total})")
    return float(_ks_statistic(ranks, n_total))


def make_seed_sequence(seed: Optional[int] = None) -> np.random.SeedSequence:
    """Master seed sequence; fresh OS entropy when ``seed`` is None."""
    return np.random.SeedSequence(seed)


def resample_seeds(seed_sequence: np.random.SeedSequence, compound: str, n_resamples: int) -> np.ndarray:
    """
    Per-resample seeds for one compound.

    A child sequence is keyed by the full SHA-256 digest of the compound
    name, so the seeds depend only on the master sequence, the compound and
    the resample index, never on processing order.

    Args:
        seed_sequence: Master seed sequence of the analysis
        compound: Compound name
        n_resamples: Number of resamples

    Returns:
        uint32 array with one seed per resample
    """
    key = int.from_bytes(hashlib.sha256(compound.encode("utf-8")).digest(), "little")
    child = np.random.SeedSequence(
        seed_sequence.entropy,
        spawn_key=tuple(seed_sequence.spawn_key) + (key,)
    )
    return child.generate_state(n_resamples, dtype=np.uint32)


def null_distribution(pool, k: int, n_total: int, seeds) -> np.ndarray:
    """
    Build the null distribution of the enrichment statistic.

    Every resample draws ``k`` distinct ranks from ``pool`` and scores them.
    For list-resampling the pool is every rank of the list, which is the
    same as randomly permuting the gene list; for compound-resampling it is
    the ranks of all database genes found in the list.

    Args:
        pool: Candidate ranks to draw from
        k: Number of genes in the compound
        n_total: Length of the gene list
        seeds: One integer seed per resample

    Returns:
        Array of resampled statistics, aligned with ``seeds``
    """
    pool = np.asarray(pool, dtype=np.int64)
    seeds = np.asarray(seeds, dtype=np.uint32)
    if k < 1:
        raise ValueError("Cannot resample a compound without genes")
    if k > len(pool):
        raise ValueError(f"Cannot draw {k} genes from a pool of {len(pool)}")
    if len(seeds) == 0:
        raise ValueError("At least one resample is required")
    return _null_distribution(pool, k, n_total, seeds)


def bootstrap_pvalue(observed: float, null_scores) -> float:
    """
    Empirical p-value of an observed statistic.

    Uses add-one smoothing, ``(1 + #{null >= observed}) / (B + 1)``, so the
    result is never zero.

    Args:
        observed: Observed enrichment statistic
        null_scores: Resampled statistics

    Returns:
        p-value in (0, 1]
    """
    null_scores = np.asarray(null_scores, dtype=np.float64)
    if len(null_scores) == 0:
        raise ValueError("Null scores array cannot be empty")

    count = _count_at_least(observed, null_scores)
    return float((1 + count) / (len(null_scores) + 1))


def perform_fdr_analysis(p_values, alpha: float = 0.05, method: str = 'fdr_bh') -> Dict[str, list]:
    """
    Perform FDR analysis on p-values.

    Args:
        p_values: Array of p-values
        alpha: Significance level
        method: Correction method understood by statsmodels' multipletests

    Returns:
        Dictionary with FDR results
    """
    if len(p_values) == 0:
        raise ValueError("Input p-values array cannot be empty")

    reject, pvals_corrected, _, _ = multipletests(
        p_values,
        alpha=alpha,
        method=method
    )

    return {
        'reject': reject.astype(bool).tolist(),
        'pvals_corrected': pvals_corrected.tolist()
    }
