"""
Utility functions for the rnaplier pipeline.

Internal helpers for configuration loading, table reading, directory
management, and data serialization.
"""

import os
import pickle

import pandas as pd
import yaml

from .exceptions import MalformedInputError

_REQUIRED_CONFIG = {
    'experiment': ['name'],
    'data_paths': ['expression_file', 'metadata_file', 'output_dir'],
    'data_columns': ['sample_id', 'category'],
}

# Consistent color palette for an arbitrary number of categories
_PALETTE = [
    '#1f77b4', '#2ca02c', '#d62728', '#ff7f0e', '#9467bd',
    '#8c564b', '#e377c2', '#7f7f7f', '#bcbd22', '#17becf',
]


def _category_color_map(categories):
    """Build a color map for an arbitrary number of sample categories."""
    return {cat: _PALETTE[i % len(_PALETTE)] for i, cat in enumerate(categories)}


def _load_config(config_path):
    """Load YAML config file and check that required keys are present."""
    with open(config_path, 'r') as f:
        config = yaml.safe_load(f)

    if not isinstance(config, dict):
        raise ValueError(f"Config file {config_path} does not contain a mapping")

    for section, keys in _REQUIRED_CONFIG.items():
        if section not in config:
            raise ValueError(f"Config is missing required section '{section}'")
        for key in keys:
            if key not in config[section]:
                raise ValueError(f"Config is missing required key '{section}.{key}'")

    return config


def _read_table(path, check_fields=False, key_col=None):
    """
    Read a TSV, CSV, or Excel table based on the file suffix.

    With ``check_fields``, delimited text is first read raw so that any data
    row whose field count differs from the header raises
    ``MalformedInputError`` keyed by that row's ``key_col`` value (first
    column if ``key_col`` is not given).
    """
    suffix = os.path.splitext(path)[1].lower()

    if suffix in ('.xlsx', '.xls'):
        return pd.read_excel(path)

    sep = ',' if suffix == '.csv' else '\t'

    if check_fields:
        _check_field_counts(path, sep, key_col)

    try:
        return pd.read_csv(path, sep=sep)
    except pd.errors.ParserError as e:
        raise MalformedInputError(f"Could not parse table: {e}", key=path) from e


def _check_field_counts(path, sep, key_col):
    """Raise MalformedInputError for the first row that is shorter or longer than the header."""
    long_rows = []
    # Header is row 0; over-long lines go to the callback and are dropped from raw
    raw = pd.read_csv(
        path, sep=sep, header=None, dtype=str, keep_default_na=False,
        engine='python', on_bad_lines=long_rows.append,
    )

    header = list(raw.iloc[0])
    key_pos = header.index(key_col) if key_col in header else 0

    if long_rows:
        fields = long_rows[0]
        raise MalformedInputError(
            f"Row has {len(fields)} fields, header has {len(header)}",
            key=fields[key_pos],
        )

    short = raw.iloc[1:].isna().any(axis=1)
    if short.any():
        row = raw.loc[short.idxmax()]
        raise MalformedInputError(
            f"Row has {int(row.notna().sum())} fields, header has {len(header)}",
            key=row.iloc[key_pos],
        )


def _create_output_dirs(base_dir):
    """Create organized output directory structure."""
    dirs = {
        'base': base_dir,
        'figures': f"{base_dir}/figures",
        'qc': f"{base_dir}/figures/qc",
        'viz': f"{base_dir}/figures/viz",
        'tables': f"{base_dir}/tables"
    }

    for dir_path in dirs.values():
        os.makedirs(dir_path, exist_ok=True)

    return dirs


def save_data(data, filename=None):
    """
    Save analysis data to pickle file for sequential workflow.

    Parameters
    ----------
    data : dict
        Analysis data dictionary (output from prep_seq, collapse_seq, etc.)
    filename : str, optional
        Custom filename. If None, uses default based on output_dir in config.

    Returns
    -------
    str
        Path where data was saved.

    Example
    -------
    >>> data = prep_seq('config/experiment.yaml')
    >>> save_data(data)  # Saves to results/data_checkpoint.pkl
    """
    if filename is None:
        output_dir = data['config']['data_paths']['output_dir']
        filename = os.path.join(output_dir, 'data_checkpoint.pkl')

    with open(filename, 'wb') as f:
        pickle.dump(data, f)

    size_mb = os.path.getsize(filename) / (1024 * 1024)

    print(f"\n{'='*80}")
    print(f"DATA SAVED")
    print(f"{'='*80}")
    print(f"Location: {filename}")
    print(f"Size: {size_mb:.1f} MB")
    print(f"\nTo load this data later:")
    print(f"  from rnaplier import load_data")
    print(f"  data = load_data('{filename}')")
    print(f"{'='*80}\n")

    return filename


def load_data(filepath):
    """
    Load analysis data from pickle file.

    Parameters
    ----------
    filepath : str
        Path to saved pickle file.

    Returns
    -------
    dict
        Analysis data dictionary.

    Example
    -------
    >>> from rnaplier import load_data
    >>> data = load_data('results/data_after_collapse.pkl')
    >>> data = plier_seq(data)  # Continue from where you left off
    """
    if not os.path.exists(filepath):
        raise FileNotFoundError(f"Data file not found: {filepath}")

    print(f"\n{'='*80}")
    print(f"LOADING DATA")
    print(f"{'='*80}")

    with open(filepath, 'rb') as f:
        data = pickle.load(f)

    size_mb = os.path.getsize(filepath) / (1024 * 1024)

    print(f"Location: {filepath}")
    print(f"Size: {size_mb:.1f} MB")

    if 'metadata' in data:
        print(f"\nData contains:")
        print(f"  Genes: {data['metadata']['n_genes']}")
        print(f"  Samples: {data['metadata']['n_samples']}")
        print(f"  Categories: {data['metadata']['categories']}")

    print(f"{'='*80}\n")

    return data
