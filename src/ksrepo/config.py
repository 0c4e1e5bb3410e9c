"""Configuration handling for the ksRepo pipeline."""

import tomli
import tomli_w
from pathlib import Path
from typing import Any, Dict, Optional, Union

RESAMPLING_MODES = ("list", "compound")

# Methods accepted by statsmodels.stats.multitest.multipletests
FDR_METHODS = (
    "bonferroni", "sidak", "holm-sidak", "holm", "simes-hochberg", "hommel",
    "fdr_bh", "fdr_by", "fdr_tsbh", "fdr_tsbky",
)

DEFAULT_ANALYSIS = {
    "resamples": 1000,
    "mode": "list",
    "seed": None,
    "fdr_method": "fdr_bh",
    "alpha": 0.05,
    "min_genes": 1,
    "num_threads": 1,
}


def validate_analysis_params(params: Dict[str, Any]) -> Dict[str, Any]:
    """Merge analysis parameters with defaults and validate them.

    Args:
        params: Analysis parameters, possibly partial

    Returns:
        Complete dictionary of analysis parameters

    Raises:
        ValueError: If any parameter is out of range or of the wrong type
    """
    merged = dict(DEFAULT_ANALYSIS)
    merged.update({k: v for k, v in params.items() if v is not None})

    resamples = merged["resamples"]
    if isinstance(resamples, bool) or not isinstance(resamples, int) or resamples < 1:
        raise ValueError(f"resamples must be a positive integer, got {resamples!r}")

    if merged["mode"] not in RESAMPLING_MODES:
        raise ValueError(
            f"Unknown resampling mode {merged['mode']!r}; "
            f"expected one of: {', '.join(RESAMPLING_MODES)}"
        )

    seed = merged["seed"]
    if seed is not None and (isinstance(seed, bool) or not isinstance(seed, int) or seed < 0):
        raise ValueError(f"seed must be a non-negative integer, got {seed!r}")

    if merged["fdr_method"] not in FDR_METHODS:
        raise ValueError(
            f"Unknown FDR method {merged['fdr_method']!r}; "
            f"expected one of: {', '.join(FDR_METHODS)}"
        )

    alpha = merged["alpha"]
    if isinstance(alpha, bool) or not isinstance(alpha, (int, float)) or not 0 < alpha < 1:
        raise ValueError(f"alpha must be a number in (0, 1), got {alpha!r}")

    for key in ("min_genes", "num_threads"):
        value = merged[key]
        if isinstance(value, bool) or not isinstance(value, int) or value < 1:
            raise ValueError(f"{key} must be a positive integer, got {value!r}")

    return merged


class PipelineConfig:
    """Configuration class for the ksRepo pipeline."""

    def __init__(self, config_path: Union[str, Path]):
        """Initialise the configuration from a TOML file.

        Args:
            config_path: Path to the TOML configuration file
        """
        self.config_path = config_path

        try:
            with open(config_path, "rb") as f:
                self.config = tomli.load(f)
        except FileNotFoundError:
            raise ValueError(f"Error loading configuration file: {config_path} does not exist")
        except tomli.TOMLDecodeError as e:
            raise ValueError(f"Error loading configuration file: {str(e)}")

        required_sections = ['input', 'output']
        missing_sections = [section for section in required_sections if section not in self.config]
        if missing_sections:
            raise ValueError(f"Missing required sections in configuration: {', '.join(missing_sections)}")

        self.input_files = self.config.get("input", {})

        required_input_files = ['gene_list_file', 'interactions_file']
        missing_files = [key for key in required_input_files if key not in self.input_files]
        if missing_files:
            raise ValueError(f"Missing required input files in configuration: {', '.join(missing_files)}")

        self.output_config = self.config.get("output", {})

        self.analysis_params = validate_analysis_params(self.config.get("analysis", {}))

        self.num_threads = self.analysis_params["num_threads"]

    @property
    def gene_list_options(self) -> Dict[str, Any]:
        """Keyword arguments for :func:`ksrepo.data.load_gene_list`."""
        return {
            "gene_column": self.input_files.get("gene_column", "gene_id"),
            "rank_column": self.input_files.get("rank_column"),
            "descending": self.input_files.get("descending", False),
        }

    @property
    def interaction_options(self) -> Dict[str, Any]:
        """Keyword arguments for :func:`ksrepo.data.load_interactions`."""
        return {
            "compound_column": self.input_files.get("compound_column", "compound"),
            "gene_column": self.input_files.get("interaction_gene_column",
                                                self.input_files.get("gene_column", "gene_id")),
        }

    def get_output_path(self, subdir: Optional[str] = None) -> Path:
        """Get the path to the output directory or a subdirectory within it.

        Args:
            subdir: Optional subdirectory name within the output directory

        Returns:
            Path object for the requested directory
        """
        output_dir = self.output_config.get("directory", self.output_config.get("output_dir", "results"))
        base_path = Path(output_dir)

        if subdir:
            return base_path / subdir

        return base_path

    def save_config(self, output_path: Union[str, Path]) -> None:
        """Save the configuration to a TOML file.

        Unset optional values (such as a missing seed) are omitted, since
        TOML has no null.

        Args:
            output_path: Path to save the configuration file
        """
        config = dict(self.config)
        config["analysis"] = {k: v for k, v in self.analysis_params.items() if v is not None}
        with open(output_path, "wb") as f:
            tomli_w.dump(config, f)
