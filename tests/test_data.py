"""Tests for data loading and the rank index."""

import pytest
from pathlib import Path
import tempfile
import os
import numpy as np

from ksrepo.data import (
    InvalidInputError,
    RankIndex,
    compound_universe,
    load_gene_list,
    load_interactions
)

@pytest.fixture
def gene_list_file():
    """Create a temporary ranked gene list file for testing."""
    with tempfile.NamedTemporaryFile(mode='w', suffix='.tsv', delete=False) as f:
        f.write("gene_id\tp_value\tlogfc\n")
        f.write("TP53\t0.04\t1.2\n")
        f.write("EGFR\t0.001\t-2.5\n")
        f.write("MYC\t0.2\t0.3\n")
        f.write("BRCA1\t0.01\t0.9\n")

    yield Path(f.name)
    os.unlink(f.name)

@pytest.fixture
def interactions_file():
    """Create a temporary long-format interaction table for testing."""
    with tempfile.NamedTemporaryFile(mode='w', suffix='.tsv', delete=False) as f:
        f.write("compound\tgene_id\n")
        f.write("tamoxifen\tBRCA1\n")
        f.write("erlotinib\tEGFR\n")
        f.write("tamoxifen\tTP53\n")
        f.write("erlotinib\tEGFR\n")
        f.write("nutlin\tMDM2\n")

    yield Path(f.name)
    os.unlink(f.name)

@pytest.fixture
def gmt_file():
    """Create a temporary GMT file for testing."""
    with tempfile.NamedTemporaryFile(mode='w', suffix='.gmt', delete=False) as f:
        f.write("tamoxifen\tCTD\tBRCA1\tTP53\n")
        f.write("erlotinib\thttp://example.org\tEGFR\n")
        f.write("\n")
        f.write("tamoxifen\tCTD\tESR1\t\n")

    yield Path(f.name)
    os.unlink(f.name)

def test_rank_index():
    """Ranks follow the order of the list."""
    index = RankIndex(["g1", "g2", "g3"])
    assert len(index) == 3
    assert "g2" in index
    assert "g9" not in index
    assert index.rank("g1") == 0
    assert index.rank("g3") == 2
    assert index.genes == ("g1", "g2", "g3")

    with pytest.raises(KeyError):
        index.rank("g9")

def test_rank_index_duplicates():
    """Duplicate symbols are rejected with their names in the message."""
    with pytest.raises(InvalidInputError, match="g2"):
        RankIndex(["g1", "g2", "g3", "g2"])

def test_rank_index_invalid():
    """Empty lists and non-string symbols are rejected."""
    with pytest.raises(InvalidInputError, match="empty"):
        RankIndex([])
    with pytest.raises(InvalidInputError):
        RankIndex(["g1", None])
    with pytest.raises(InvalidInputError):
        RankIndex(["g1", ""])

    # InvalidInputError is a ValueError
    with pytest.raises(ValueError):
        RankIndex([])

def test_resolve():
    """Unknown genes are dropped, repeats counted once, ranks sorted."""
    index = RankIndex([f"g{i}" for i in range(1, 11)])

    ranks = index.resolve(["g9", "g2", "g100", "g2", "g5"])
    assert ranks.dtype == np.int64
    assert ranks.tolist() == [1, 4, 8]

    assert len(index.resolve(["g100", "g200"])) == 0
    assert len(index.resolve([])) == 0
    assert index.resolve({"g1"}).tolist() == [0]

def test_compound_universe():
    """The universe is every database gene present in the list."""
    index = RankIndex(["a", "b", "c", "d", "e"])
    interactions = {
        "drug1": {"a", "c", "x"},
        "drug2": {"c", "e"},
        "drug3": {"y"},
    }
    assert compound_universe(index, interactions).tolist() == [0, 2, 4]
    assert len(compound_universe(index, {})) == 0

def test_load_gene_list_file_order(gene_list_file):
    """Without a rank column the file order is kept."""
    genes = load_gene_list(gene_list_file)
    assert genes == ["TP53", "EGFR", "MYC", "BRCA1"]

def test_load_gene_list_sorted(gene_list_file):
    """Genes can be ordered by a statistic column."""
    assert load_gene_list(gene_list_file, rank_column="p_value") == ["EGFR", "BRCA1", "TP53", "MYC"]
    assert load_gene_list(gene_list_file, rank_column="logfc", descending=True) == [
        "TP53", "BRCA1", "MYC", "EGFR"
    ]

def test_load_gene_list_missing_column(gene_list_file):
    """Unknown columns raise ValueError."""
    with pytest.raises(ValueError, match="symbol"):
        load_gene_list(gene_list_file, gene_column="symbol")
    with pytest.raises(ValueError, match="q_value"):
        load_gene_list(gene_list_file, rank_column="q_value")

def test_load_gene_list_drops_blank(tmp_path):
    """Rows without a gene symbol are dropped."""
    file_path = tmp_path / "genes.tsv"
    file_path.write_text("gene_id\tp_value\nA\t0.1\n\t0.2\nB\t0.3\n")
    assert load_gene_list(file_path) == ["A", "B"]

def test_load_gene_list_missing_rank(tmp_path):
    """Rows with an NA statistic are dropped and the rest sort numerically."""
    file_path = tmp_path / "genes.tsv"
    file_path.write_text("gene_id\tp_value\nA\t0.04\nB\t1.2e-09\nC\tNA\nD\t0.5\n")
    assert load_gene_list(file_path, rank_column="p_value") == ["B", "A", "D"]
    assert load_gene_list(file_path, rank_column="p_value", descending=True) == ["D", "A", "B"]

def test_load_gene_list_non_numeric_rank(tmp_path):
    """A rank column that is not numeric raises ValueError naming it."""
    file_path = tmp_path / "genes.tsv"
    file_path.write_text("gene_id\tdirection\nA\tup\nB\tdown\n")
    with pytest.raises(ValueError, match="direction"):
        load_gene_list(file_path, rank_column="direction")

def test_load_interactions(interactions_file):
    """Long-format tables become compound to gene-set mappings."""
    interactions = load_interactions(interactions_file)
    assert list(interactions) == ["tamoxifen", "erlotinib", "nutlin"]
    assert interactions["tamoxifen"] == {"BRCA1", "TP53"}
    assert interactions["erlotinib"] == {"EGFR"}
    assert interactions["nutlin"] == {"MDM2"}

def test_load_interactions_custom_columns(tmp_path):
    """Column names are configurable."""
    file_path = tmp_path / "ctd.tsv"
    file_path.write_text("ChemicalName\tGeneSymbol\tOrganism\naspirin\tPTGS2\thuman\naspirin\tPTGS1\thuman\n")
    interactions = load_interactions(file_path, compound_column="ChemicalName", gene_column="GeneSymbol")
    assert interactions == {"aspirin": {"PTGS1", "PTGS2"}}

    with pytest.raises(ValueError, match="compound"):
        load_interactions(file_path)

def test_load_interactions_gmt(gmt_file):
    """GMT files are read as name, description, genes; repeated names merge."""
    interactions = load_interactions(gmt_file)
    assert list(interactions) == ["tamoxifen", "erlotinib"]
    assert interactions["tamoxifen"] == {"BRCA1", "TP53", "ESR1"}
    assert interactions["erlotinib"] == {"EGFR"}
