"""Main pipeline implementation for ksRepo drug-repositioning analysis."""

import json
import logging
import multiprocessing
import os
import platform
import time
from concurrent.futures import ProcessPoolExecutor, as_completed
from concurrent.futures.process import BrokenProcessPool
from functools import partial
from pathlib import Path
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence, Tuple

import numpy as np
import polars as pl
from tqdm.auto import tqdm

# Configure tqdm to work properly on macOS
is_mac = platform.system() == 'Darwin'
tqdm_kwargs = {
    'position': 0,
    'leave': True,
    'ncols': 100,
    'dynamic_ncols': True,
    'ascii': is_mac,
}

from ksrepo.config import PipelineConfig, validate_analysis_params
from .data import (
    RankIndex,
    compound_universe,
    load_gene_list,
    load_interactions
)
from ksrepo.stats import (
    bootstrap_pvalue,
    ks_statistic,
    make_seed_sequence,
    null_distribution,
    perform_fdr_analysis,
    resample_seeds
)
from ksrepo.utils import ensure_dir

RESULT_SCHEMA = {
    "compound": pl.Utf8,
    "n_genes": pl.Int64,
    "ks": pl.Float64,
    "boot_p": pl.Float64,
    "boot_fdr": pl.Float64,
}


def analyse_compound(
    compound: str,
    genes: Iterable[str],
    index: RankIndex,
    pool: np.ndarray,
    seed_sequence: np.random.SeedSequence,
    resamples: int,
    min_genes: int = 1
) -> Optional[Dict[str, Any]]:
    """
    Score one compound and estimate its bootstrap p-value.

    Args:
        compound: Compound name
        genes: Gene symbols interacting with the compound
        index: Rank index of the gene list
        pool: Ranks that resamples are drawn from
        seed_sequence: Master seed sequence of the analysis
        resamples: Number of resamples
        min_genes: Minimum number of genes that must be found in the list

    Returns:
        Result row without the FDR column, or None if too few of the
        compound's genes are in the list
    """
    ranks = index.resolve(genes)
    n_genes = len(ranks)
    if n_genes < min_genes:
        return None

    n_total = len(index)
    observed = ks_statistic(ranks, n_total)
    seeds = resample_seeds(seed_sequence, compound, resamples)
    null_scores = null_distribution(pool, n_genes, n_total, seeds)

    return {
        "compound": compound,
        "n_genes": n_genes,
        "ks": observed,
        "boot_p": bootstrap_pvalue(observed, null_scores),
    }


# Defined at module level so it can be pickled for the process pool
def _analyse_chunk(
    chunk: List[Tuple[str, Tuple[str, ...]]],
    index: RankIndex,
    pool: np.ndarray,
    entropy: int,
    resamples: int,
    min_genes: int
) -> List[Tuple[str, Optional[Dict[str, Any]]]]:
    """Analyse a batch of compounds; returns (compound, row) pairs."""
    seed_sequence = np.random.SeedSequence(entropy)
    return [
        (compound, analyse_compound(compound, genes, index, pool, seed_sequence, resamples, min_genes))
        for compound, genes in chunk
    ]


def _chunk(items: list, n_chunks: int) -> List[list]:
    size = max(1, -(-len(items) // n_chunks))
    return [items[i:i + size] for i in range(0, len(items), size)]


def _run_sequential(chunks, analyse, show_progress: bool) -> Dict[str, Optional[Dict[str, Any]]]:
    logger = logging.getLogger(__name__)
    logger.debug("Scoring compounds sequentially")

    rows = {}
    total = sum(len(c) for c in chunks)
    with tqdm(total=total, desc="Scoring compounds", unit="compound",
              disable=not show_progress, **tqdm_kwargs) as pbar:
        for chunk in chunks:
            for compound, row in analyse(chunk):
                rows[compound] = row
            pbar.update(len(chunk))
    return rows


def _run_parallel(chunks, analyse, num_threads: int, show_progress: bool) -> Dict[str, Optional[Dict[str, Any]]]:
    logger = logging.getLogger(__name__)
    logger.debug(f"Scoring compounds in {len(chunks)} batches with {num_threads} worker processes")

    rows = {}
    pending = list(range(len(chunks)))
    total = sum(len(c) for c in chunks)
    with tqdm(total=total, desc="Scoring compounds", unit="compound",
              disable=not show_progress, **tqdm_kwargs) as pbar:
        try:
            context = multiprocessing.get_context('spawn')
            with ProcessPoolExecutor(max_workers=num_threads, mp_context=context) as executor:
                futures = {executor.submit(analyse, chunks[i]): i for i in pending}
                for future in as_completed(futures):
                    i = futures[future]
                    for compound, row in future.result():
                        rows[compound] = row
                    pending.remove(i)
                    pbar.update(len(chunks[i]))
        except BrokenProcessPool as e:
            logger.error(f"Worker pool failed: {str(e)}")
            logger.info(f"Falling back to sequential processing for {len(pending)} remaining batches")
            for i in pending:
                for compound, row in analyse(chunks[i]):
                    rows[compound] = row
                pbar.update(len(chunks[i]))
    return rows


def ks_repo(
    gene_list: Sequence[str],
    interactions: Mapping[str, Iterable[str]],
    resamples: int = 1000,
    mode: str = "list",
    seed: Optional[int] = None,
    fdr_method: str = "fdr_bh",
    alpha: float = 0.05,
    min_genes: int = 1,
    num_threads: int = 1,
    show_progress: bool = False
) -> pl.DataFrame:
    """
    Run the ksRepo analysis.

    For every compound with at least ``min_genes`` genes in the list, the KS
    enrichment statistic is computed and compared with ``resamples``
    resampled statistics. Bootstrap p-values are then corrected across all
    compounds.

    Args:
        gene_list: Gene symbols ordered by decreasing significance
        interactions: Mapping of compound name to interacting gene symbols
        resamples: Number of resamples per compound
        mode: "list" to permute the gene list, "compound" to draw random
            gene-sets from the database genes present in the list
        seed: Seed for reproducible resampling; fresh entropy when None
        fdr_method: Multiple-testing method for statsmodels' multipletests
        alpha: Significance level, used for the summary in the log
        min_genes: Compounds with fewer genes in the list are skipped
        num_threads: Number of worker processes
        show_progress: Display a progress bar

    Returns:
        DataFrame with columns compound, n_genes, ks, boot_p and boot_fdr,
        sorted by boot_fdr, then boot_p, then descending ks, then compound

    Raises:
        InvalidInputError: If the gene list is empty or has duplicates
        ValueError: If a parameter is invalid
    """
    logger = logging.getLogger(__name__)

    params = validate_analysis_params({
        "resamples": resamples,
        "mode": mode,
        "seed": seed,
        "fdr_method": fdr_method,
        "alpha": alpha,
        "min_genes": min_genes,
        "num_threads": num_threads,
    })

    index = RankIndex(gene_list)
    n_total = len(index)

    if params["mode"] == "compound":
        pool = compound_universe(index, interactions)
        logger.info(f"Compound resampling from {len(pool)} database genes present in the gene list")
    else:
        pool = np.arange(n_total, dtype=np.int64)
        logger.info(f"List resampling over {n_total} ranked genes")

    seed_sequence = make_seed_sequence(params["seed"])
    if params["seed"] is None:
        logger.info(f"No seed given; rerun with seed={seed_sequence.entropy} to reproduce")

    compounds = [(name, tuple(genes)) for name, genes in interactions.items()]
    workers = max(1, min(params["num_threads"], len(compounds)))
    chunks = _chunk(compounds, workers * 4)

    analyse = partial(
        _analyse_chunk,
        index=index,
        pool=pool,
        entropy=seed_sequence.entropy,
        resamples=params["resamples"],
        min_genes=params["min_genes"]
    )

    logger.info(f"Scoring {len(compounds)} compounds with {params['resamples']} resamples each")
    if workers > 1:
        rows_by_compound = _run_parallel(chunks, analyse, workers, show_progress)
    else:
        rows_by_compound = _run_sequential(chunks, analyse, show_progress)

    # Reassemble in database order so the outcome does not depend on scheduling
    rows = [rows_by_compound[name] for name, _ in compounds if rows_by_compound[name] is not None]

    skipped = len(compounds) - len(rows)
    if skipped:
        logger.info(f"Skipped {skipped} compounds with fewer than {params['min_genes']} genes in the list")

    if not rows:
        logger.warning("No compound has genes in the gene list; returning an empty result table")
        return pl.DataFrame(schema=RESULT_SCHEMA)

    fdr = perform_fdr_analysis(
        [row["boot_p"] for row in rows],
        alpha=params["alpha"],
        method=params["fdr_method"]
    )
    for row, q_value in zip(rows, fdr["pvals_corrected"]):
        row["boot_fdr"] = float(q_value)

    logger.info(f"{sum(fdr['reject'])} of {len(rows)} compounds significant at "
                f"{params['fdr_method']} < {params['alpha']}")

    results = pl.DataFrame(rows, schema=RESULT_SCHEMA)
    return results.sort(
        ["boot_fdr", "boot_p", "ks", "compound"],
        descending=[False, False, True, False]
    )


class KsRepoPipeline:
    """Main class for running a ksRepo analysis from a configuration file."""

    def __init__(self, config_path: str):
        """Initialise the pipeline with a configuration file.

        Args:
            config_path: Path to the TOML configuration file
        """
        self.config = PipelineConfig(config_path)
        self.logger = logging.getLogger(__name__)
        self.results = None
        self._load_input_data()

    def _load_input_data(self):
        """Load and validate input data files."""
        self.logger.debug("Starting to load input data files")

        for file_key in ('gene_list_file', 'interactions_file'):
            file_path = self.config.input_files[file_key]
            if not isinstance(file_path, (str, bytes, os.PathLike)) or not Path(file_path).is_file():
                error_msg = f"Input file not found: {file_path} (specified as {file_key})"
                self.logger.error(error_msg)
                raise FileNotFoundError(error_msg)

        self.gene_list = load_gene_list(
            self.config.input_files['gene_list_file'],
            **self.config.gene_list_options
        )
        self.interactions = load_interactions(
            self.config.input_files['interactions_file'],
            **self.config.interaction_options
        )

        self.logger.info(f"Loaded {len(self.gene_list)} ranked genes")
        self.logger.info(f"Loaded {len(self.interactions)} compounds")
        self.logger.debug("Finished loading input data files")

    def run(self, show_progress: bool = True) -> pl.DataFrame:
        """Run the analysis and save its results."""
        self.logger.info("Starting ksRepo analysis")
        start_time = time.time()

        self.results = ks_repo(
            self.gene_list,
            self.interactions,
            show_progress=show_progress,
            **self.config.analysis_params
        )

        self.logger.info("Saving results")
        self.save_results()

        elapsed_time = time.time() - start_time
        self.logger.info(f"Pipeline completed in {elapsed_time:.2f} seconds")
        return self.results

    def save_results(self, output_dir: Optional[str] = None):
        """Save analysis results.

        Args:
            output_dir: Optional output directory path. If not provided,
                        uses the directory from the configuration.
        """
        if self.results is None:
            self.logger.warning("No results to save. Run the pipeline first.")
            return

        output_path = Path(output_dir) if output_dir is not None else self.config.get_output_path()
        data_path = ensure_dir(output_path / 'data')

        results_file = data_path / 'ksrepo_results.csv'
        self.results.write_csv(results_file)
        self.logger.info(f"Saved {self.results.height} compound results to {results_file}")

        config_file = data_path / 'pipeline_config.json'
        with open(config_file, 'w') as f:
            config_dict = {
                'input_files': {k: str(v) for k, v in self.config.input_files.items()},
                'output': self.config.output_config,
                'analysis': self.config.analysis_params,
                'n_genes': len(self.gene_list),
                'n_compounds': len(self.interactions),
            }
            json.dump(config_dict, f, indent=2)

        self.config.save_config(data_path / 'pipeline_config.toml')
        self.logger.info(f"Saved configuration to {config_file}")
