"""
ksRepo
======

Drug repositioning by Kolmogorov-Smirnov enrichment of compound-gene
interactions in a ranked gene list.
"""

from .pipeline import KsRepoPipeline, ks_repo as ks_repo, analyse_compound as analyse_compound
from .config import PipelineConfig
from .data import (
    InvalidInputError as InvalidInputError,
    RankIndex as RankIndex,
    compound_universe as compound_universe,
    load_gene_list as load_gene_list,
    load_interactions as load_interactions,
)
from .stats import (
    ks_statistic as ks_statistic,
    null_distribution as null_distribution,
    resample_seeds as resample_seeds,
    bootstrap_pvalue as bootstrap_pvalue,
    perform_fdr_analysis as perform_fdr_analysis,
)
from .utils import setup_logging as setup_logging, ensure_dir as ensure_dir

__version__ = "0.1.0"

__all__ = [
    "KsRepoPipeline",
    "PipelineConfig",
    "ks_repo",
    "analyse_compound",
    "InvalidInputError",
    "RankIndex",
    "compound_universe",
    "load_gene_list",
    "load_interactions",
    "ks_statistic",
    "null_distribution",
    "resample_seeds",
    "bootstrap_pvalue",
    "perform_fdr_analysis",
    "setup_logging",
    "ensure_dir",
]
