"""
Prior-knowledge matrix factorization (PLIER) for the rnaplier pipeline.

Decomposes the gene-level expression matrix Y (genes x samples) into
loadings Z and latent variables B, while encouraging each column of Z to be
explained by a sparse, non-negative combination U of prior gene sets C:

    ||Y - ZB||^2 + L1 ||Z - CU||^2 + L2 ||B||^2 + L3 |U|_1,   Z, U >= 0

Also provides the gene set helpers (GMT reading, membership matrices) and
the PLIER preprocessing steps (common genes, row normalization, number of
PCs).
"""

import copy
import functools
import os
import warnings
from dataclasses import dataclass, field

import numpy as np
import pandas as pd
from gseapy.parser import read_gmt
from scipy.stats import mannwhitneyu
from sklearn.exceptions import ConvergenceWarning
from sklearn.linear_model import Lasso
from sklearn.metrics import roc_auc_score
from statsmodels.stats.multitest import multipletests

from .exceptions import MalformedInputError
from .utils import save_data

SUMMARY_COLUMNS = ['pathway', 'LV index', 'AUC', 'p-value', 'FDR']


@dataclass
class PLIERResult:
    """
    Output of a PLIER decomposition.

    Attributes
    ----------
    Z : pd.DataFrame
        Gene loadings, genes x LVs.
    B : pd.DataFrame
        Latent variable values, LVs x samples.
    U : pd.DataFrame
        Gene set to LV associations, gene sets x LVs (sparse, non-negative).
    summary : pd.DataFrame
        One row per LV/gene set pair with non-zero U: AUC, p-value, FDR.
    """
    Z: pd.DataFrame
    B: pd.DataFrame
    U: pd.DataFrame
    summary: pd.DataFrame
    L1: float = 0.0
    L2: float = 0.0
    L3: list = field(default_factory=list)
    n_iter: int = 0
    converged: bool = False

    def lv_labels(self):
        """Label each LV with its strongest gene set, e.g. ``'3,REACTOME_CELL_CYCLE'``."""
        labels = {}
        for j, lv in enumerate(self.U.columns, 1):
            column = self.U[lv]
            if (column > 0).any():
                labels[lv] = f"{j},{column.idxmax()}"
            else:
                labels[lv] = lv
        return labels


# =============================================================================
# GENE SETS
# =============================================================================

def load_gmt(path):
    """
    Read a GMT gene set file with gseapy.

    Each line is tab-separated: set name, description, then member genes.
    Blank lines are skipped; a named set with no member genes, or a file with
    no sets at all, is a MalformedInputError.

    Returns
    -------
    dict
        Gene set name -> list of gene symbols.
    """
    gene_sets = {
        name: [gene for gene in genes if gene]
        for name, genes in read_gmt(path).items()
        if name
    }

    if not gene_sets:
        raise MalformedInputError("GMT file contains no gene sets", key=path, stage='plier')

    empty = [name for name, genes in gene_sets.items() if not genes]
    if empty:
        raise MalformedInputError(
            f"GMT gene set '{empty[0]}' has no member genes",
            key=path,
            stage='plier',
        )
    return gene_sets



def gene_sets_to_matrix(gene_sets):
    """Binary membership matrix, genes x gene sets."""
    genes = sorted({gene for members in gene_sets.values() for gene in members})
    matrix = pd.DataFrame(0, index=genes, columns=list(gene_sets), dtype=int)
    for name, members in gene_sets.items():
        if members:
            matrix.loc[sorted(set(members)), name] = 1
    return matrix


def combine_paths(*matrices):
    """Outer-join membership matrices on genes; genes absent from a set get 0."""
    combined = pd.concat(matrices, axis=1, join='outer').fillna(0).astype(int)
    return combined.loc[:, ~combined.columns.duplicated()]


def common_rows(a, b):
    """Row labels present in both ``a`` and ``b``, in the order of ``a``."""
    return a.index.intersection(b.index, sort=False)


def row_norm(df):
    """Z-score each row (sample standard deviation)."""
    mean = df.mean(axis=1)
    sd = df.std(axis=1, ddof=1)
    return df.sub(mean, axis=0).div(sd, axis=0)


def num_pc(matrix, method='elbow', n_permutations=20, seed=None):
    """
    Estimate the number of informative principal components.

    'elbow' returns the number of components before the sharpest bend in
    the singular value curve. 'permutation' counts the leading components
    whose singular values exceed the average of ``n_permutations`` runs where
    every row is shuffled independently.
    """
    values = np.asarray(matrix, dtype=float)
    values = values - values.mean(axis=1, keepdims=True)
    d = np.linalg.svd(values, compute_uv=False)

    if method == 'elbow':
        if len(d) < 3:
            return 1
        curvature = np.diff(np.diff(d))
        return max(int(np.argmax(curvature)) + 1, 1)

    if method == 'permutation':
        rng = np.random.default_rng(seed)
        null = np.zeros((n_permutations, len(d)))
        for b in range(n_permutations):
            shuffled = np.array([rng.permutation(row) for row in values])
            null[b] = np.linalg.svd(shuffled, compute_uv=False)
        above = d > null.mean(axis=0)
        n = len(d) if above.all() else int(np.argmin(above))
        return max(n, 1)

    raise ValueError(f"Unknown method '{method}', expected 'elbow' or 'permutation'")


# =============================================================================
# DECOMPOSITION
# =============================================================================

def _fit_u(C, Z, l3_ratio):
    """Sparse non-negative regression of every Z column on the gene sets."""
    n_genes, n_paths = C.shape
    U = np.zeros((n_paths, Z.shape[1]))
    alphas = []

    for j in range(Z.shape[1]):
        z = Z[:, j]
        # Smallest alpha that zeroes every coefficient
        alpha_max = (C.T @ z).max() / n_genes
        if alpha_max <= 0:
            alphas.append(0.0)
            continue

        alpha = l3_ratio * alpha_max
        model = Lasso(alpha=alpha, positive=True, fit_intercept=False, max_iter=5000)
        with warnings.catch_warnings():
            warnings.simplefilter('ignore', ConvergenceWarning)
            model.fit(C, z)
        U[:, j] = model.coef_
        alphas.append(alpha)

    return U, alphas


def _summarize(Z, U, C, path_names):
    """AUC and Mann-Whitney p-value of every non-zero LV/gene set pair."""
    n_genes = C.shape[0]
    rows = []

    for j in range(Z.shape[1]):
        z = Z[:, j]
        if np.ptp(z) == 0:
            continue
        for p in np.flatnonzero(U[:, j] > 0):
            members = C[:, p] > 0
            n_members = members.sum()
            if n_members == 0 or n_members == n_genes:
                continue
            rows.append({
                'pathway': path_names[p],
                'LV index': j + 1,
                'AUC': roc_auc_score(members, z),
                'p-value': mannwhitneyu(z[members], z[~members], alternative='greater').pvalue,
            })

    summary = pd.DataFrame(rows, columns=SUMMARY_COLUMNS[:-1])
    summary['FDR'] = multipletests(summary['p-value'], method='fdr_bh')[1] if len(summary) else []
    return summary[SUMMARY_COLUMNS]


def plier(expression, prior, k, l1=None, l2=None, l3_ratio=0.1, max_iter=100, tol=5e-6):
    """
    Decompose row-normalized expression with prior gene set knowledge.

    This is an alternating-update approximation of the PLIER objective
    above, not a port of the PLIER R package. It uses PLIER's default L1/L2
    and its non-negativity on Z and U, but differs in three ways:

    - L3 is fixed per LV by ``l3_ratio`` rather than chosen by PLIER's
      cross-validated search over held-out gene set members;
    - the AUC/p-value summary is computed on all prior genes, with no
      held-out split, so it is optimistic next to PLIER's;
    - there is no frozen-U refinement or gene set pruning pass.

    Results are therefore comparable in spirit to PLIER's but not
    numerically identical. Pass ``factorizer`` to ``plier_seq`` to use a
    different implementation.

    Parameters
    ----------
    expression : pd.DataFrame
        Row-normalized expression, genes x samples.
    prior : pd.DataFrame
        Binary gene set membership, genes x gene sets. Must contain every
        gene in ``expression``.
    k : int
        Number of latent variables.
    l1, l2 : float, optional
        Regularization constants. By default L2 is the k-th singular value of
        ``expression`` and L1 is L2 / 2.
    l3_ratio : float, optional
        Sparsity of U, as a fraction of each LV's critical Lasso alpha
        (default: 0.1). Smaller values give more gene sets per LV.
    max_iter : int, optional
        Maximum number of alternating updates (default: 100).
    tol : float, optional
        Stop when the relative change in B falls below this (default: 5e-6).

    Returns
    -------
    PLIERResult
    """
    genes = expression.index
    Y = expression.to_numpy(dtype=float)
    C = prior.loc[genes].to_numpy(dtype=float)
    n_genes, n_samples = Y.shape

    if not 1 <= k <= min(n_genes, n_samples):
        raise ValueError(f"k must be between 1 and {min(n_genes, n_samples)}, got {k}")

    _, d, vt = np.linalg.svd(Y, full_matrices=False)
    if l2 is None:
        l2 = max(float(d[k - 1]), 1e-6)
    if l1 is None:
        l1 = l2 / 2

    eye = np.eye(k)
    B = d[:k, None] * vt[:k]
    U = np.zeros((C.shape[1], k))
    alphas = []
    converged = False

    for n_iter in range(1, max_iter + 1):
        Z = np.linalg.solve(B @ B.T + l1 * eye, (Y @ B.T + l1 * C @ U).T).T
        Z[Z < 0] = 0

        U, alphas = _fit_u(C, Z, l3_ratio)

        B_new = np.linalg.solve(Z.T @ Z + l2 * eye, Z.T @ Y)
        delta = np.linalg.norm(B_new - B) / max(np.linalg.norm(B), 1e-12)
        B = B_new

        if delta < tol:
            converged = True
            break

    lv_names = [f"LV{j}" for j in range(1, k + 1)]

    return PLIERResult(
        Z=pd.DataFrame(Z, index=genes, columns=lv_names),
        B=pd.DataFrame(B, index=lv_names, columns=expression.columns),
        U=pd.DataFrame(U, index=prior.columns, columns=lv_names),
        summary=_summarize(Z, U, C, list(prior.columns)),
        L1=l1,
        L2=l2,
        L3=alphas,
        n_iter=n_iter,
        converged=converged,
    )


# =============================================================================
# PIPELINE STEP
# =============================================================================

def plier_seq(data, k=None, min_genes=None, fdr_cutoff=None, factorizer=None):
    """
    Run PLIER on the collapsed expression matrix.

    This function:
    1. Loads the configured GMT gene set files into one membership matrix
    2. Keeps genes present in both expression and gene sets
    3. Drops genes with zero variance or missing values
    4. Drops gene sets with fewer than ``min_genes`` remaining members
    5. Row-normalizes expression (z-score per gene)
    6. Chooses k from the number of significant PCs (unless given)
    7. Runs the decomposition and summarizes LV/gene set associations

    Parameters
    ----------
    data : dict
        Output from collapse_seq().
    k : int, optional
        Number of latent variables. Defaults to ``plier.k`` in the config,
        then to round(num_pc * k_multiplier).
    min_genes : int, optional
        Minimum gene set size after intersection (default: config or 10).
    fdr_cutoff : float, optional
        FDR threshold for reporting associations (default: config or 0.05).
    factorizer : callable, optional
        Replacement for :func:`plier`, called as
        ``factorizer(expression, prior, k)`` and returning a PLIERResult.

    Returns
    -------
    dict
        Updated data dictionary with:
        - 'plier': PLIERResult
        - 'plier_params': parameters used for the run

    Example
    -------
    >>> data = collapse_seq(data)
    >>> data = plier_seq(data)
    >>> data['plier'].summary.query('FDR < 0.05')
    """

    print("\n" + "="*80)
    print("PLIER MATRIX FACTORIZATION")
    print("="*80)

    config = data['config']
    params = config.get('plier', {})
    expression = data['expression']

    if min_genes is None:
        min_genes = params.get('min_genes', 10)
    if fdr_cutoff is None:
        fdr_cutoff = params.get('fdr_cutoff', 0.05)
    seed = params.get('seed', config.get('collapse', {}).get('seed'))

    # =========================================================================
    # 1. LOAD GENE SETS
    # =========================================================================
    print(f"\n[1/5] Loading gene sets...")

    gmt_files = config['data_paths'].get('gene_sets', [])
    if isinstance(gmt_files, str):
        gmt_files = [gmt_files]
    if not gmt_files:
        raise MalformedInputError(
            "No gene set files configured", key='data_paths.gene_sets', stage='plier'
        )

    matrices = []
    for path in gmt_files:
        gene_sets = load_gmt(path)
        matrices.append(gene_sets_to_matrix(gene_sets))
        print(f"  {os.path.basename(path)}: {len(gene_sets)} gene sets")

    prior = combine_paths(*matrices)
    print(f"  > {prior.shape[1]} gene sets covering {prior.shape[0]} genes")

    # =========================================================================
    # 2. COMMON GENES
    # =========================================================================
    print(f"\n[2/5] Matching genes to gene sets...")

    genes = common_rows(expression, prior)
    if len(genes) == 0:
        raise MalformedInputError(
            "No genes in common between expression data and gene sets",
            key=', '.join(gmt_files),
            stage='plier',
        )

    expr = expression.loc[genes]
    informative = expr.notna().all(axis=1) & (expr.std(axis=1, ddof=1) > 0)
    if (~informative).any():
        print(f"  Warning: dropping {(~informative).sum()} genes with zero variance or missing values")
    expr = expr[informative]
    prior = prior.loc[expr.index]

    set_sizes = prior.sum(axis=0)
    prior = prior.loc[:, set_sizes >= min_genes]
    if prior.shape[1] == 0:
        raise MalformedInputError(
            f"No gene set has at least {min_genes} expressed genes",
            key=', '.join(gmt_files),
            stage='plier',
        )

    print(f"  > {len(expr)} genes in common")
    print(f"  > {prior.shape[1]} gene sets with >= {min_genes} genes")

    # =========================================================================
    # 3. NORMALIZE AND CHOOSE K
    # =========================================================================
    print(f"\n[3/5] Row-normalizing and choosing number of LVs...")

    Y = row_norm(expr)
    n_samples = Y.shape[1]

    if k is None:
        k = params.get('k')
    if k is None:
        method = params.get('num_pc_method', 'elbow')
        n_pc = num_pc(Y, method=method, seed=seed)
        k = int(round(n_pc * params.get('k_multiplier', 1.3)))
        print(f"  {method} estimate: {n_pc} significant PCs")

    k = int(min(max(k, 1), max(n_samples - 1, 1), len(Y)))
    print(f"  > Using k = {k}")

    # =========================================================================
    # 4. FACTORIZATION
    # =========================================================================
    print(f"\n[4/5] Running decomposition...")

    if factorizer is None:
        factorizer = functools.partial(
            plier,
            l3_ratio=params.get('l3_ratio', 0.1),
            max_iter=params.get('max_iter', 100),
        )

    result = factorizer(Y, prior, k)

    if result.n_iter:
        status = 'converged' if result.converged else 'stopped at max_iter'
        print(f"  > {status} after {result.n_iter} iterations")
    print(f"  L1 = {result.L1:.3f}, L2 = {result.L2:.3f}")

    significant = result.summary[result.summary['FDR'] < fdr_cutoff]
    sig_lvs = sorted(significant['LV index'].unique())

    print(f"  > {len(significant)} LV/gene set associations with FDR < {fdr_cutoff}")
    print(f"  > {len(sig_lvs)} of {k} LVs have at least one")
    labels = result.lv_labels()
    for lv_index in sig_lvs[:10]:
        print(f"    {labels[f'LV{lv_index}']}")

    # =========================================================================
    # 5. SAVE RESULTS
    # =========================================================================
    print(f"\n[5/5] Saving results...")

    tables_dir = data['output_dirs']['tables']
    result.summary.to_csv(os.path.join(tables_dir, 'plier_summary.tsv'), sep='\t', index=False)
    result.B.to_csv(os.path.join(tables_dir, 'plier_B.tsv'), sep='\t')
    result.U.to_csv(os.path.join(tables_dir, 'plier_U.tsv'), sep='\t')
    result.Z.to_csv(os.path.join(tables_dir, 'plier_Z.tsv'), sep='\t')
    print(f"  > Saved: plier_summary.tsv, plier_B.tsv, plier_U.tsv, plier_Z.tsv")
    print(f"    Location: {tables_dir}")

    data_updated = copy.copy(data)
    data_updated['plier'] = result
    data_updated['plier_params'] = {
        'k': k,
        'min_genes': min_genes,
        'fdr_cutoff': fdr_cutoff,
        'n_genes': len(Y),
        'n_gene_sets': prior.shape[1],
        'significant_lvs': [f"LV{i}" for i in sig_lvs],
    }

    # Auto-save
    output_path = os.path.join(config['data_paths']['output_dir'], 'data_after_plier.pkl')
    save_data(data_updated, output_path)

    print("\n" + "="*80)
    print("PLIER COMPLETE")
    print("="*80)
    print(f"\nNext step: viz_seq() for latent variable plots")
    print("="*80 + "\n")

    return data_updated
