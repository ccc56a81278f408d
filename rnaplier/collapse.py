"""
Gene-level collapsing for the rnaplier pipeline.

Several expression rows can map to the same gene symbol (for example, two
Ensembl IDs annotated with one symbol). This module keeps one row per symbol:
the row with the highest mean expression, with ties broken by a seeded
random draw so repeated runs pick the same rows.
"""

import copy
import os
from dataclasses import dataclass, field

import numpy as np
import pandas as pd

from .exceptions import EmptyAggregationError, InvariantViolationError
from .utils import save_data

DEFAULT_SEED = 12345


@dataclass
class DuplicateResolution:
    """
    Outcome of resolving duplicate symbols.

    Attributes
    ----------
    selected : list of int
        Positions of the surviving rows, one per symbol, in sorted symbol order.
    ties : dict
        Symbol -> positions that shared the maximum and went to a random draw.
    n_nonfinite : int
        Number of NaN statistics seen. NaN ranks below every real value.
    """
    selected: list = field(default_factory=list)
    ties: dict = field(default_factory=dict)
    n_nonfinite: int = 0


def row_mean(values, key=None):
    """Arithmetic mean of one record's sample values, as a float."""
    values = np.asarray(values, dtype=float)
    if values.size == 0:
        raise EmptyAggregationError("Record has no sample values", key=key)
    return float(values.mean())


def row_means(df, sample_cols, key_col):
    """
    Mean of ``sample_cols`` for every row of ``df``.

    NaN values are not skipped. A row with any NaN gets a NaN mean, which
    ``resolve_duplicates`` ranks below every real number.
    """
    if len(sample_cols) == 0:
        key = df[key_col].iloc[0] if len(df) else None
        raise EmptyAggregationError("No sample columns to average", key=key)
    return df[sample_cols].astype(float).mean(axis=1, skipna=False)


def resolve_duplicates(symbols, stats, rng=None):
    """
    Select exactly one row per symbol.

    Rows are grouped by symbol and, within each group, the rows with the
    largest statistic are kept. If more than one row remains, one is drawn
    uniformly at random from ``rng``. Groups are visited in sorted symbol
    order so the sequence of draws depends only on the seed and the input.

    Parameters
    ----------
    symbols : sequence of str
        Grouping key for each row.
    stats : sequence of float
        Selection statistic for each row (usually the mean expression).
    rng : numpy.random.Generator or int, optional
        Random source for tie-breaks. An int is used as a seed.

    Returns
    -------
    DuplicateResolution

    Example
    -------
    >>> res = resolve_duplicates(['A', 'A', 'B'], [5.0, 7.0, 3.0], rng=42)
    >>> res.selected
    [1, 2]
    """
    stats = np.asarray(stats, dtype=float)
    if len(stats) != len(symbols):
        raise ValueError(
            f"Got {len(symbols)} symbols but {len(stats)} statistics"
        )

    rng = np.random.default_rng(rng)

    groups = {}
    for position, symbol in enumerate(symbols):
        groups.setdefault(symbol, []).append(position)

    resolution = DuplicateResolution()

    for symbol in sorted(groups):
        members = groups[symbol]
        values = stats[members]
        finite = ~np.isnan(values)
        resolution.n_nonfinite += int((~finite).sum())

        if finite.any():
            best = values[finite].max()
            candidates = [m for m, v in zip(members, values) if v == best]
        else:
            candidates = list(members)

        if len(candidates) == 1:
            resolution.selected.append(candidates[0])
        else:
            pick = candidates[int(rng.integers(len(candidates)))]
            resolution.selected.append(pick)
            resolution.ties[symbol] = candidates

    return resolution


def assemble_matrix(df, symbol_col, sample_cols):
    """
    Build the symbol x sample expression matrix.

    Raises InvariantViolationError if a symbol appears twice; that means
    duplicate resolution was skipped or is broken.
    """
    duplicated = df[symbol_col][df[symbol_col].duplicated()]
    if len(duplicated) > 0:
        raise InvariantViolationError(
            f"{duplicated.nunique()} symbol(s) occur more than once",
            key=duplicated.iloc[0],
        )

    matrix = df.set_index(symbol_col)[list(sample_cols)].astype(float)
    matrix.index.name = 'symbol'
    return matrix


def collapse_seq(data, seed=None):
    """
    Collapse parsed expression rows to one row per gene symbol.

    This function:
    1. Drops the stable identifier column (only symbols are kept)
    2. Computes the mean expression of every row
    3. Keeps, per symbol, the row with the highest mean
    4. Breaks ties with a seeded random draw
    5. Builds the symbol x sample expression matrix

    Parameters
    ----------
    data : dict
        Output from prep_seq().
    seed : int, optional
        Seed for tie-breaking. Defaults to ``collapse.seed`` in the config,
        then to 12345.

    Returns
    -------
    dict
        Updated data dictionary with:
        - 'expression': symbol x sample DataFrame
        - 'collapse': audit of the deduplication (ties, NaN means, seed)

    Example
    -------
    >>> data = prep_seq('config/experiment.yaml')
    >>> data = collapse_seq(data, seed=12345)
    >>> data['expression'].shape
    """

    print("\n" + "="*80)
    print("COLLAPSING DUPLICATE GENE SYMBOLS")
    print("="*80)

    config = data['config']
    sample_cols = data['sample_cols']

    if seed is None:
        seed = config.get('collapse', {}).get('seed', DEFAULT_SEED)

    print(f"\nRows: {len(data['df'])}")
    print(f"Samples: {len(sample_cols)}")
    print(f"Seed: {seed}")

    # =========================================================================
    # 1. DROP STABLE IDENTIFIERS
    # =========================================================================
    print(f"\n[1/4] Dropping stable identifiers...")

    df = data['df'].drop(columns=['stable_id']).reset_index(drop=True)
    print(f"  > Keeping {df['symbol'].nunique()} distinct symbols")

    # =========================================================================
    # 2. MEAN EXPRESSION PER ROW
    # =========================================================================
    print(f"\n[2/4] Calculating mean expression per row...")

    df['mean'] = row_means(df, sample_cols, key_col='symbol')
    print(f"  > Mean range: {df['mean'].min():.2f} to {df['mean'].max():.2f}")

    # =========================================================================
    # 3. RESOLVE DUPLICATES
    # =========================================================================
    print(f"\n[3/4] Selecting highest-mean row per symbol...")

    counts = df['symbol'].value_counts()
    duplicated_symbols = counts[counts > 1].index.tolist()
    print(f"  {len(duplicated_symbols)} symbols have more than one row")

    rng = np.random.default_rng(seed)
    resolution = resolve_duplicates(df['symbol'].tolist(), df['mean'].to_numpy(), rng)

    if resolution.n_nonfinite > 0:
        print(f"  Warning: {resolution.n_nonfinite} rows have an undefined (NaN) mean")
        print(f"    These rank below any row with a real mean")

    if resolution.ties:
        print(f"  {len(resolution.ties)} symbols tied on the maximum mean, picked at random:")
        for symbol in list(resolution.ties)[:10]:
            print(f"    {symbol}: {len(resolution.ties[symbol])} tied rows")
        if len(resolution.ties) > 10:
            print(f"    ... and {len(resolution.ties) - 10} more")

    resolved = df.iloc[resolution.selected]
    print(f"  > Removed {len(df) - len(resolved)} duplicate rows")

    # =========================================================================
    # 4. BUILD EXPRESSION MATRIX
    # =========================================================================
    print(f"\n[4/4] Building expression matrix...")

    expression = assemble_matrix(resolved, 'symbol', sample_cols)
    print(f"  > {expression.shape[0]} genes x {expression.shape[1]} samples")

    tables_dir = data['output_dirs']['tables']
    expression.to_csv(os.path.join(tables_dir, 'expression_collapsed.tsv'), sep='\t')
    print(f"  > Saved: expression_collapsed.tsv")

    selected = set(resolution.selected)
    tie_rows = []
    for symbol, candidates in resolution.ties.items():
        tie_rows.append({
            'symbol': symbol,
            'n_tied': len(candidates),
            'tied_mean': df.loc[candidates[0], 'mean'],
            'selected_row': next(p for p in candidates if p in selected),
        })
    ties_df = pd.DataFrame(tie_rows, columns=['symbol', 'n_tied', 'tied_mean', 'selected_row'])
    ties_df.to_csv(os.path.join(tables_dir, 'collapse_ties.tsv'), sep='\t', index=False)
    print(f"  > Saved: collapse_ties.tsv ({len(ties_df)} ties)")

    # =========================================================================
    # 5. UPDATE DATA DICTIONARY
    # =========================================================================
    metadata_updated = data['metadata'].copy()
    metadata_updated['n_genes'] = expression.shape[0]

    data_updated = copy.copy(data)
    data_updated['expression'] = expression
    data_updated['gene_means'] = df['mean']
    data_updated['metadata'] = metadata_updated
    data_updated['collapse'] = {
        'seed': seed,
        'n_rows_in': len(df),
        'n_symbols': expression.shape[0],
        'duplicated_symbols': duplicated_symbols,
        'ties': resolution.ties,
        'n_nonfinite_means': resolution.n_nonfinite,
    }

    # Auto-save for sequential workflow
    output_path = os.path.join(config['data_paths']['output_dir'], 'data_after_collapse.pkl')
    save_data(data_updated, output_path)

    print("\n" + "="*80)
    print("COLLAPSE COMPLETE")
    print("="*80)
    print(f"\nRows in:          {len(df)}")
    print(f"Genes out:        {expression.shape[0]}")
    print(f"Random tie-breaks: {len(resolution.ties)}")
    print(f"\nNext step: plier_seq() for matrix factorization")
    print("="*80 + "\n")

    return data_updated
