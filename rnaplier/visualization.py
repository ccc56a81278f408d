"""
Visualization functions for the rnaplier pipeline.

Builds long-format latent variable tables and plots LV values by sample
category, gene set associations, and LV-vs-LV scatters.
"""

import os

import matplotlib.pyplot as plt
import numpy as np
import seaborn as sns

from .utils import _category_color_map


def lv_long_table(B, sample_info, category_col):
    """
    Reshape the LV x sample matrix to one row per (LV, sample).

    Returns
    -------
    pd.DataFrame
        Columns: 'LV', 'sample', 'value', and ``category_col``.

    Example
    -------
    >>> long_df = lv_long_table(data['plier'].B, data['sample_info'], 'mycn_status')
    >>> long_df.groupby(['LV', 'mycn_status'])['value'].mean()
    """
    long_df = (
        B.T.rename_axis('sample')
        .reset_index()
        .melt(id_vars='sample', var_name='LV', value_name='value')
    )
    long_df[category_col] = long_df['sample'].map(sample_info[category_col])
    return long_df[['LV', 'sample', 'value', category_col]]


def _select_lvs(result, fdr_cutoff, max_lvs):
    """LVs with at least one gene set association below the FDR cutoff."""
    significant = result.summary[result.summary['FDR'] < fdr_cutoff]
    lvs = [f"LV{i}" for i in sorted(significant['LV index'].unique())]
    if not lvs:
        print(f"  Warning: No LV passes FDR < {fdr_cutoff}, plotting the first LVs instead")
        lvs = list(result.B.index)
    return lvs[:max_lvs]


def viz_seq(data, lvs=None, fdr_cutoff=None, max_lvs=6, top_paths=5):
    """
    Create latent variable plots for PLIER results.

    Creates:
    - Boxplots of LV values by sample category (with individual samples)
    - Heatmap of gene set associations (U) for the plotted LVs
    - Scatter plot of the first two plotted LVs, colored by category

    Parameters
    ----------
    data : dict
        Output from plier_seq().
    lvs : list of str, optional
        LV names to plot (e.g. ['LV1', 'LV4']). By default, the LVs with a
        gene set association below ``fdr_cutoff``.
    fdr_cutoff : float, optional
        FDR threshold for choosing LVs (default: the one used by plier_seq).
    max_lvs : int, optional
        Maximum number of LVs to plot (default: 6).
    top_paths : int, optional
        Gene sets per LV to show in the U heatmap (default: 5).

    Returns
    -------
    pd.DataFrame
        Long-format LV table used for the plots.

    Example
    -------
    >>> data = plier_seq(data)
    >>> viz_seq(data)
    """

    print("\n" + "="*80)
    print("CREATING VISUALIZATIONS")
    print("="*80)

    result = data['plier']
    category_col = data['config']['data_columns']['category']
    sample_info = data['sample_info']
    viz_dir = data['output_dirs']['viz']
    tables_dir = data['output_dirs']['tables']

    if fdr_cutoff is None:
        fdr_cutoff = data.get('plier_params', {}).get('fdr_cutoff', 0.05)
    if lvs is None:
        lvs = _select_lvs(result, fdr_cutoff, max_lvs)

    labels = result.lv_labels()
    long_df = lv_long_table(result.B.loc[lvs], sample_info, category_col)
    long_df['LV'] = long_df['LV'].map(labels)
    long_df[category_col] = long_df[category_col].fillna('unknown').astype(str)

    print(f"\nOutput directory: {viz_dir}")
    print(f"Plotting {len(lvs)} LVs: {', '.join(lvs)}")

    long_df.to_csv(os.path.join(tables_dir, 'lv_long.tsv'), sep='\t', index=False)
    print(f"  > Saved: lv_long.tsv")

    color_map = _category_color_map(sorted(long_df[category_col].unique()))

    # =========================================================================
    # 1. LV VALUES BY CATEGORY
    # =========================================================================
    print(f"\n[1/3] Creating LV boxplots by {category_col}...")

    n_cols = min(3, len(lvs))
    n_rows = int(np.ceil(len(lvs) / n_cols))
    fig, axes = plt.subplots(n_rows, n_cols, figsize=(5*n_cols, 4.5*n_rows), squeeze=False)

    for ax, lv in zip(axes.flat, lvs):
        lv_data = long_df[long_df['LV'] == labels[lv]]
        sns.boxplot(
            data=lv_data, x=category_col, y='value', hue=category_col,
            palette=color_map, showfliers=False, legend=False, ax=ax
        )
        sns.stripplot(
            data=lv_data, x=category_col, y='value',
            color='black', size=4, alpha=0.6, jitter=0.2, ax=ax
        )
        ax.set_title(labels[lv], fontsize=10, fontweight='bold')
        ax.set_xlabel(category_col, fontsize=10)
        ax.set_ylabel('LV value', fontsize=10)
        ax.grid(alpha=0.3)

    for ax in list(axes.flat)[len(lvs):]:
        ax.set_visible(False)

    plt.tight_layout()
    plt.savefig(os.path.join(viz_dir, 'lv_by_category.pdf'), dpi=300, bbox_inches='tight')
    plt.close()

    print(f"  > Saved: lv_by_category.pdf")

    # =========================================================================
    # 2. GENE SET ASSOCIATION HEATMAP
    # =========================================================================
    print(f"\n[2/3] Creating gene set association heatmap...")

    U = result.U[lvs]
    paths = []
    for lv in lvs:
        top = U[lv][U[lv] > 0].nlargest(top_paths).index
        paths.extend(p for p in top if p not in paths)

    if paths:
        U_plot = U.loc[paths].rename(columns=labels)
        fig, ax = plt.subplots(figsize=(2 + 1.2*len(lvs), 2 + 0.35*len(paths)))

        sns.heatmap(
            U_plot,
            cmap='YlOrRd',
            vmin=0,
            cbar_kws={'label': 'U (association)'},
            ax=ax
        )

        ax.set_title('Gene Set Associations', fontsize=14, fontweight='bold')
        ax.set_xticklabels(ax.get_xticklabels(), rotation=45, ha='right', fontsize=8)
        ax.set_yticklabels(ax.get_yticklabels(), rotation=0, fontsize=8)

        plt.tight_layout()
        plt.savefig(os.path.join(viz_dir, 'plier_U_heatmap.pdf'), dpi=300, bbox_inches='tight')
        plt.close()

        print(f"  > Saved: plier_U_heatmap.pdf ({len(paths)} gene sets)")
    else:
        print(f"  Warning: No gene set associations for the plotted LVs, skipping")

    # =========================================================================
    # 3. LV SCATTER
    # =========================================================================
    print(f"\n[3/3] Creating LV scatter plot...")

    if len(lvs) >= 2:
        x_lv, y_lv = lvs[:2]
        wide = result.B.loc[[x_lv, y_lv]].T
        wide[category_col] = sample_info[category_col].reindex(wide.index).fillna('unknown').astype(str)

        fig, ax = plt.subplots(figsize=(9, 8))

        sns.scatterplot(
            data=wide, x=x_lv, y=y_lv, hue=category_col,
            palette=color_map, s=80, alpha=0.8, edgecolor='black', ax=ax
        )

        ax.set_xlabel(labels[x_lv], fontsize=11)
        ax.set_ylabel(labels[y_lv], fontsize=11)
        ax.set_title(f'{x_lv} vs {y_lv}', fontsize=14, fontweight='bold')
        ax.grid(alpha=0.3)

        plt.tight_layout()
        plt.savefig(os.path.join(viz_dir, f'scatter_{x_lv}_{y_lv}.pdf'), dpi=300, bbox_inches='tight')
        plt.close()

        print(f"  > Saved: scatter_{x_lv}_{y_lv}.pdf")
    else:
        print(f"  Warning: Need at least 2 LVs for a scatter plot, skipping")

    print("\n" + "="*80)
    print("VISUALIZATIONS COMPLETE")
    print("="*80)
    print(f"\nPlots saved to: {viz_dir}")
    print("="*80 + "\n")

    return long_df
