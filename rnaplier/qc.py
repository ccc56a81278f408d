"""
Quality control functions for the rnaplier pipeline.

Generates QC plots of the collapsed expression matrix (gene mean
distribution, sample correlations, PCA by sample category).
"""

import matplotlib.pyplot as plt
import numpy as np
import seaborn as sns
from sklearn.decomposition import PCA
from sklearn.preprocessing import StandardScaler

from .utils import _category_color_map


def qc_seq(data, output_suffix=''):
    """
    Generate quality control plots for the collapsed expression matrix.

    Creates:
    - Distribution of per-row mean expression (before collapsing)
    - Sample correlation heatmap
    - PCA plot colored by sample category

    Parameters
    ----------
    data : dict
        Output from collapse_seq().
    output_suffix : str, optional
        Suffix to add to output filenames. Use this to distinguish QC runs.

    Returns
    -------
    None
        Saves plots to results/figures/qc/.

    Example
    -------
    >>> data = collapse_seq(data)
    >>> qc_seq(data)
    """

    print("\n" + "="*80)
    print("QUALITY CONTROL ANALYSIS")
    if output_suffix:
        print(f"Output suffix: {output_suffix}")
    print("="*80)

    expression = data['expression']
    category_col = data['config']['data_columns']['category']
    labels = data['sample_info'][category_col].fillna('unknown').astype(str)
    qc_dir = data['output_dirs']['qc']

    print(f"\nGenerating QC plots...")
    print(f"  Output directory: {qc_dir}")

    # =========================================================================
    # 1. MEAN EXPRESSION DISTRIBUTION
    # =========================================================================
    print(f"\n[1/3] Creating mean expression distribution...")

    gene_means = data['gene_means'].dropna()
    kept_means = expression.mean(axis=1).dropna()

    fig, ax = plt.subplots(figsize=(10, 6))
    ax.hist(gene_means, bins=50, alpha=0.5, label=f'All rows (n={len(gene_means)})')
    ax.hist(kept_means, bins=50, alpha=0.5, label=f'Kept per symbol (n={len(kept_means)})')
    ax.set_title('Mean Expression per Row', fontsize=14, fontweight='bold')
    ax.set_xlabel('Mean expression', fontsize=12)
    ax.set_ylabel('Frequency', fontsize=12)
    ax.legend(fontsize=10)
    ax.grid(alpha=0.3)

    plt.tight_layout()
    plt.savefig(f"{qc_dir}/01_mean_expression{output_suffix}.pdf", dpi=300, bbox_inches='tight')
    plt.close()

    print(f"  > Saved: 01_mean_expression{output_suffix}.pdf")

    # =========================================================================
    # 2. CORRELATION HEATMAP
    # =========================================================================
    print(f"\n[2/3] Creating sample correlation heatmap...")

    corr_data = expression.corr()

    fig, ax = plt.subplots(figsize=(12, 10))

    sns.heatmap(
        corr_data,
        annot=False,
        cmap='RdBu_r',
        center=0,
        square=True,
        cbar_kws={'label': 'Pearson Correlation'},
        ax=ax
    )

    ax.set_title('Sample-to-Sample Correlation', fontsize=14, fontweight='bold')
    ax.set_xticklabels(ax.get_xticklabels(), rotation=45, ha='right', fontsize=8)
    ax.set_yticklabels(ax.get_yticklabels(), rotation=0, fontsize=8)

    plt.tight_layout()
    plt.savefig(f"{qc_dir}/02_correlation_heatmap{output_suffix}.pdf", dpi=300, bbox_inches='tight')
    plt.close()

    print(f"  > Saved: 02_correlation_heatmap{output_suffix}.pdf")

    print(f"\n  Average correlations within categories:")
    for category in labels.unique():
        samples = labels.index[labels == category]
        if len(samples) > 1:
            category_corr = corr_data.loc[samples, samples]
            mask = np.triu(np.ones_like(category_corr), k=1).astype(bool)
            avg_corr = category_corr.where(mask).stack().mean()
            print(f"    {category}: {avg_corr:.3f}")

    # =========================================================================
    # 3. PCA PLOT
    # =========================================================================
    print(f"\n[3/3] Creating PCA plot...")

    _create_pca_plot(
        expression, labels,
        title=f'PCA - Samples by {category_col}',
        save_path=f"{qc_dir}/03_pca_plot{output_suffix}.pdf",
    )

    print("\n" + "="*80)
    print("QC COMPLETE")
    print("="*80)
    print(f"\nPlots saved to: {qc_dir}")
    print(f"  - 01_mean_expression{output_suffix}.pdf")
    print(f"  - 02_correlation_heatmap{output_suffix}.pdf")
    print(f"  - 03_pca_plot{output_suffix}.pdf")
    print("="*80 + "\n")


def _create_pca_plot(expression, labels, title, save_path):
    """Create and save a PCA scatter plot of samples colored by label."""
    pca_data = expression.dropna()

    if len(pca_data) < 10:
        print(f"  Warning: Only {len(pca_data)} complete genes")

    scaled_data = StandardScaler().fit_transform(pca_data.T)

    n_components = min(2, *scaled_data.shape)
    pca = PCA(n_components=n_components)
    pca_coords = pca.fit_transform(scaled_data)
    if n_components < 2:
        pca_coords = np.column_stack([pca_coords, np.zeros(len(pca_coords))])

    color_map = _category_color_map(labels.unique())
    sample_labels = labels.loc[pca_data.columns].to_numpy()

    fig, ax = plt.subplots(figsize=(12, 10))

    for category, color in color_map.items():
        mask = sample_labels == category
        ax.scatter(
            pca_coords[mask, 0],
            pca_coords[mask, 1],
            c=color,
            label=category,
            s=120,
            alpha=0.7,
            edgecolors='black',
            linewidth=1
        )

    variance = list(pca.explained_variance_ratio_) + [0.0]
    ax.set_xlabel(f'PC1 ({variance[0]*100:.1f}%)', fontsize=12)
    ax.set_ylabel(f'PC2 ({variance[1]*100:.1f}%)', fontsize=12)
    ax.set_title(title, fontsize=14, fontweight='bold')
    ax.legend(fontsize=12, loc='best')
    ax.grid(alpha=0.3)

    plt.tight_layout()
    plt.savefig(save_path, dpi=300, bbox_inches='tight')
    plt.close()

    print(f"  > Saved: {save_path.split('/')[-1]}")
    print(f"    PC1 explains {variance[0]*100:.1f}% of variance")
    print(f"    PC2 explains {variance[1]*100:.1f}% of variance")
