"""
Data preparation functions for the rnaplier pipeline.

Handles loading the expression and sample metadata tables, schema
validation, and splitting composite gene identifiers into a stable
identifier and a gene symbol.
"""

import os

import pandas as pd

from .exceptions import MalformedInputError
from .utils import _create_output_dirs, _load_config, _read_table, save_data

DEFAULT_DELIMITER = '_'


def split_identifier(identifier, delimiter=DEFAULT_DELIMITER):
    """
    Split a composite identifier into (stable_id, symbol).

    Only the first delimiter is a split point, so everything after it is the
    symbol: ``'ENSG00000228439_AC011043.1'`` gives
    ``('ENSG00000228439', 'AC011043.1')`` and ``'A_B_C'`` gives ``('A', 'B_C')``.

    Raises MalformedInputError if the delimiter does not occur.
    """
    if not isinstance(identifier, str):
        raise MalformedInputError(
            f"Identifier is not a string ({type(identifier).__name__})",
            key=identifier,
        )

    stable_id, sep, symbol = identifier.partition(delimiter)
    if not sep:
        raise MalformedInputError(
            f"Identifier has no '{delimiter}' separating ID and symbol",
            key=identifier,
        )
    return stable_id, symbol


def _validate_expression(df, id_col, sample_cols, source):
    """Check the expression schema once and coerce sample columns to float."""
    if id_col not in df.columns:
        raise MalformedInputError(f"Identifier column '{id_col}' not found", key=source)

    if len(sample_cols) == 0:
        raise MalformedInputError("Expression table has no sample columns", key=source)

    for col in sample_cols:
        numeric = pd.to_numeric(df[col], errors='coerce')
        bad = numeric.isna() & df[col].notna()
        if bad.any():
            row = bad.idxmax()
            raise MalformedInputError(
                f"Non-numeric value {df.at[row, col]!r} in sample column '{col}'",
                key=df.at[row, id_col],
            )
        df[col] = numeric.astype(float)

    return df


def _align_sample_info(meta, sample_cols, sample_id_col, category_col, source):
    """Index the metadata by sample ID, in expression column order."""
    for col in (sample_id_col, category_col):
        if col not in meta.columns:
            raise MalformedInputError(f"Metadata column '{col}' not found", key=source)

    duplicated = meta[sample_id_col].duplicated()
    if duplicated.any():
        print(f"  Warning: {duplicated.sum()} duplicated sample IDs in metadata, keeping first")
        meta = meta[~duplicated]

    sample_info = meta.set_index(sample_id_col).reindex(sample_cols)
    sample_info.index.name = 'sample'

    missing = sample_info[category_col].isna()
    if missing.any():
        print(f"  Warning: {missing.sum()} samples have no '{category_col}' label")
        for sample in sample_info.index[missing][:5]:
            print(f"    {sample}")

    return sample_info


def prep_seq(config_path):
    """
    Load and prepare RNA-seq expression data for analysis.

    This function:
    1. Loads the YAML configuration file
    2. Reads the expression table (one identifier column + sample columns)
    3. Validates that every sample value is numeric
    4. Splits composite identifiers into stable ID and gene symbol
    5. Reads the sample metadata and aligns it to the expression columns
    6. Creates the output directory structure

    Parameters
    ----------
    config_path : str
        Path to YAML configuration file.

    Returns
    -------
    dict
        Dictionary containing:
        - 'df': pd.DataFrame with 'stable_id', 'symbol' and sample columns
        - 'config': loaded configuration dictionary
        - 'sample_cols': sample column names in input order
        - 'sample_info': pd.DataFrame of sample metadata indexed by sample
        - 'metadata': summary statistics about the data
        - 'output_dirs': paths to output directories

    Example
    -------
    >>> data = prep_seq('config/experiment.yaml')
    >>> df = data['df']
    >>> print(f"Loaded {len(df)} rows for {df['symbol'].nunique()} genes")
    """

    # =========================================================================
    # 1. LOAD CONFIGURATION
    # =========================================================================
    print("\n" + "="*80)
    print("STEP 1: LOADING DATA AND CONFIGURATION")
    print("="*80)

    config = _load_config(config_path)

    data_columns = config['data_columns']
    category_col = data_columns['category']
    delimiter = config.get('identifiers', {}).get('delimiter', DEFAULT_DELIMITER)

    print(f"\n> Configuration loaded")
    print(f"  Experiment: {config['experiment']['name']}")
    print(f"  Sample category: {category_col}")
    print(f"  Identifier delimiter: '{delimiter}'")

    # =========================================================================
    # 2. LOAD EXPRESSION DATA
    # =========================================================================
    print(f"\n[1/5] Loading expression data...")

    expression_file = config['data_paths']['expression_file']
    df = _read_table(expression_file, check_fields=True, key_col=data_columns.get('gene_id'))

    id_col = data_columns.get('gene_id') or df.columns[0]
    sample_cols = [c for c in df.columns if c != id_col]

    print(f"  > Loaded {df.shape[0]} rows, {len(sample_cols)} samples")

    # =========================================================================
    # 3. VALIDATE SCHEMA
    # =========================================================================
    print(f"\n[2/5] Validating sample columns...")

    df = _validate_expression(df, id_col, sample_cols, expression_file)

    n_missing = int(df[sample_cols].isna().sum().sum())
    print(f"  > All sample values numeric")
    if n_missing > 0:
        print(f"  Warning: {n_missing} missing values in expression table")

    # =========================================================================
    # 4. SPLIT IDENTIFIERS
    # =========================================================================
    print(f"\n[3/5] Splitting '{id_col}' into stable ID and symbol...")

    parsed = [split_identifier(identifier, delimiter) for identifier in df[id_col]]

    df = df.drop(columns=[id_col])
    df.insert(0, 'stable_id', [stable_id for stable_id, _ in parsed])
    df.insert(1, 'symbol', [symbol for _, symbol in parsed])

    n_symbols = df['symbol'].nunique()
    counts = df['symbol'].value_counts()
    n_duplicated = int((counts > 1).sum())

    print(f"  > {len(df)} rows map to {n_symbols} distinct symbols")
    if n_duplicated > 0:
        print(f"    {n_duplicated} symbols appear more than once")
        print(f"    Most repeated: {', '.join(counts.index[:5])}")

    # =========================================================================
    # 5. LOAD SAMPLE METADATA
    # =========================================================================
    print(f"\n[4/5] Loading sample metadata...")

    metadata_file = config['data_paths']['metadata_file']
    meta = _read_table(metadata_file, check_fields=True, key_col=data_columns['sample_id'])
    sample_info = _align_sample_info(
        meta, sample_cols, data_columns['sample_id'], category_col, metadata_file
    )

    category_counts = sample_info[category_col].value_counts()
    for category, n in category_counts.items():
        print(f"  {category}: {n} samples")

    # =========================================================================
    # 6. CREATE OUTPUT DIRECTORIES AND SAVE PARSED TABLE
    # =========================================================================
    print(f"\n[5/5] Saving parsed expression table...")

    output_dir = config['data_paths']['output_dir']
    output_dirs = _create_output_dirs(output_dir)

    parsed_path = os.path.join(output_dirs['tables'], 'parsed_expression.tsv')
    df.to_csv(parsed_path, sep='\t', index=False)
    print(f"  > Saved: parsed_expression.tsv")
    print(f"    Location: {output_dirs['tables']}")

    # =========================================================================
    # 7. CREATE METADATA SUMMARY
    # =========================================================================
    metadata = {
        'n_rows': len(df),
        'n_genes': n_symbols,
        'n_samples': len(sample_cols),
        'n_duplicated_symbols': n_duplicated,
        'categories': category_counts.index.tolist(),
        'samples_per_category': category_counts.to_dict(),
    }

    print("\n" + "="*80)
    print("DATA PREPARATION COMPLETE")
    print("="*80)
    print(f"\nExpression rows:         {metadata['n_rows']}")
    print(f"Distinct symbols:        {metadata['n_genes']}")
    print(f"Samples:                 {metadata['n_samples']}")
    print(f"Categories:              {', '.join(map(str, metadata['categories']))}")
    print("\n" + "="*80 + "\n")

    return_data = {
        'df': df,
        'config': config,
        'sample_cols': sample_cols,
        'sample_info': sample_info,
        'metadata': metadata,
        'output_dirs': output_dirs
    }

    # Auto-save for sequential workflow
    save_path = os.path.join(output_dir, 'data_after_prep.pkl')
    save_data(return_data, save_path)

    return return_data
