"""
Input handling for the ksRepo pipeline: ranked gene lists, compound
interaction tables and the rank index that links the two.
"""

from typing import Dict, Iterable, List, Mapping, Optional, Sequence, Set
from pathlib import Path
import logging

import numba as nb
import numpy as np
import polars as pl


# Missing-value tokens written by R and spreadsheet exports
MISSING_VALUES = ["NA", "NaN", "nan", ""]


class InvalidInputError(ValueError):
    """Raised when a gene list cannot be turned into a rank index."""


@nb.njit
def _unique_sorted(ranks):
    """Sort ranks and drop repeats."""
    if len(ranks) == 0:
        return ranks
    ranks = np.sort(ranks)
    out = np.empty(len(ranks), dtype=np.int64)
    out[0] = ranks[0]
    n = 1
    for i in range(1, len(ranks)):
        if ranks[i] != out[n - 1]:
            out[n] = ranks[i]
            n += 1
    return out[:n]


class RankIndex:
    """Read-only lookup from gene symbol to its 0-based rank in a gene list.

    The gene list is ordered by decreasing significance, so rank 0 is the
    most significant gene.
    """

    def __init__(self, genes: Sequence[str]):
        """Build the index.

        Args:
            genes: Gene symbols, most significant first

        Raises:
            InvalidInputError: If the list is empty, contains duplicate
                symbols or contains entries that are not non-empty strings
        """
        genes = list(genes)
        if not genes:
            raise InvalidInputError("Gene list is empty")

        bad = [g for g in genes if not isinstance(g, str) or not g]
        if bad:
            raise InvalidInputError(
                f"Gene list contains {len(bad)} invalid symbol(s), e.g. {bad[0]!r}"
            )

        ranks = {}
        duplicates = []
        for position, gene in enumerate(genes):
            if gene in ranks:
                duplicates.append(gene)
            else:
                ranks[gene] = position

        if duplicates:
            shown = ", ".join(sorted(set(duplicates))[:10])
            raise InvalidInputError(
                f"Gene list contains {len(duplicates)} duplicate symbol(s): {shown}"
            )

        self._genes = tuple(genes)
        self._ranks = ranks

    def __len__(self) -> int:
        return len(self._genes)

    def __contains__(self, gene) -> bool:
        return gene in self._ranks

    @property
    def genes(self) -> tuple:
        return self._genes

    def rank(self, gene: str) -> int:
        """Return the rank of ``gene``; raises KeyError if it is not listed."""
        return self._ranks[gene]

    def resolve(self, genes: Iterable[str]) -> np.ndarray:
        """Map gene symbols to their sorted ranks.

        Genes missing from the list are dropped and repeated symbols are
        counted once, so the length of the result is the number of the
        compound's genes found in the list.

        Args:
            genes: Gene symbols interacting with one compound

        Returns:
            Sorted int64 array of ranks (possibly empty)
        """
        found = [self._ranks[g] for g in genes if g in self._ranks]
        if not found:
            return np.empty(0, dtype=np.int64)
        return _unique_sorted(np.asarray(found, dtype=np.int64))


def compound_universe(index: RankIndex, interactions: Mapping[str, Iterable[str]]) -> np.ndarray:
    """Ranks of every database gene that is present in the gene list.

    This is the pool that compound-resampling draws from: genes absent from
    the list carry no rank and so cannot take part in a resample.

    Args:
        index: Rank index of the gene list
        interactions: Compound to gene-set mapping

    Returns:
        Sorted, de-duplicated int64 array of ranks
    """
    genes = set()
    for gene_set in interactions.values():
        genes.update(gene_set)
    return index.resolve(genes)


def load_gene_list(
    file_path: Path,
    gene_column: str = "gene_id",
    rank_column: Optional[str] = None,
    descending: bool = False
) -> List[str]:
    """
    Load a ranked gene list.

    Without ``rank_column`` the order of the file is taken as the
    significance order. Otherwise rows are stably sorted by that column,
    ascending (e.g. p-values) unless ``descending`` is set.

    Args:
        file_path: Path to a tab-delimited file with a header row
        gene_column: Column holding gene symbols
        rank_column: Optional column to order genes by
        descending: Sort ``rank_column`` from largest to smallest

    Returns:
        Gene symbols, most significant first
    """
    df = pl.read_csv(
        file_path,
        separator='\t',
        has_header=True,
        infer_schema_length=10000,
        null_values=MISSING_VALUES
    )

    if gene_column not in df.columns:
        raise ValueError(f"Gene list file {file_path} has no column named '{gene_column}'")

    if rank_column is not None:
        if rank_column not in df.columns:
            raise ValueError(f"Gene list file {file_path} has no column named '{rank_column}'")
        try:
            df = df.with_columns(pl.col(rank_column).cast(pl.Float64, strict=True))
        except (pl.exceptions.InvalidOperationError, pl.exceptions.ComputeError):
            raise ValueError(f"Column '{rank_column}' in {file_path} is not numeric")

        n_unranked = df[rank_column].is_null().sum()
        if n_unranked:
            logging.warning(f"Dropping {n_unranked} rows without a value in '{rank_column}' from {file_path}")
            df = df.filter(pl.col(rank_column).is_not_null())

        df = df.sort(rank_column, descending=descending, maintain_order=True)

    genes = df[gene_column].cast(pl.Utf8).str.strip_chars()
    n_missing = genes.is_null().sum() + (genes == "").sum()
    if n_missing:
        logging.warning(f"Dropping {n_missing} rows without a gene symbol from {file_path}")
    genes = genes.filter(genes.is_not_null() & (genes != ""))

    logging.info(f"Loaded {len(genes)} ranked genes from {file_path}")
    return genes.to_list()


def _load_gmt(file_path: Path) -> Dict[str, Set[str]]:
    """Read a GMT file: name, description, then one gene per field."""
    interactions: Dict[str, Set[str]] = {}
    with open(file_path) as f:
        for line in f:
            fields = [field.strip() for field in line.rstrip("\n").split("\t")]
            if len(fields) < 2 or not fields[0]:
                continue
            genes = {g for g in fields[2:] if g}
            interactions.setdefault(fields[0], set()).update(genes)
    return interactions


def load_interactions(
    file_path: Path,
    compound_column: str = "compound",
    gene_column: str = "gene_id"
) -> Dict[str, Set[str]]:
    """
    Load a compound-gene interaction database.

    Files ending in ``.gmt`` are read as gene-set files; anything else is read
    as a tab-delimited table with one compound-gene pair per row.

    Args:
        file_path: Path to the interaction file
        compound_column: Column holding compound names (tabular files only)
        gene_column: Column holding gene symbols (tabular files only)

    Returns:
        Dictionary mapping compound name to its set of gene symbols, in
        first-seen compound order
    """
    file_path = Path(file_path)
    if file_path.suffix.lower() == ".gmt":
        interactions = _load_gmt(file_path)
    else:
        df = pl.read_csv(
            file_path,
            separator='\t',
            has_header=True,
            infer_schema_length=10000
        )
        for column in (compound_column, gene_column):
            if column not in df.columns:
                raise ValueError(f"Interaction file {file_path} has no column named '{column}'")

        df = df.select([
            pl.col(compound_column).cast(pl.Utf8).str.strip_chars().alias("compound"),
            pl.col(gene_column).cast(pl.Utf8).str.strip_chars().alias("gene_id"),
        ]).drop_nulls().filter((pl.col("compound") != "") & (pl.col("gene_id") != ""))

        interactions = {}
        for compound, gene in df.iter_rows():
            interactions.setdefault(compound, set()).add(gene)

    n_pairs = sum(len(genes) for genes in interactions.values())
    logging.info(f"Loaded {len(interactions)} compounds with {n_pairs} interactions from {file_path}")
    return interactions
