"""Tests for rnaplier.qc and rnaplier.visualization modules."""

import os

import pandas as pd
import pytest

from rnaplier import lv_long_table, qc_seq, viz_seq


class TestLvLongTable:
    def test_schema_and_size(self):
        B = pd.DataFrame(
            [[1.0, 2.0, 3.0], [4.0, 5.0, 6.0]],
            index=['LV1', 'LV2'],
            columns=['S1', 'S2', 'S3'],
        )
        sample_info = pd.DataFrame(
            {'mycn_status': ['Amplified', 'Nonamplified', 'Amplified']},
            index=['S1', 'S2', 'S3'],
        )

        long_df = lv_long_table(B, sample_info, 'mycn_status')

        assert list(long_df.columns) == ['LV', 'sample', 'value', 'mycn_status']
        assert len(long_df) == 6
        row = long_df[(long_df['LV'] == 'LV2') & (long_df['sample'] == 'S3')]
        assert row['value'].item() == 6.0
        assert row['mycn_status'].item() == 'Amplified'

    def test_unlabeled_sample_gets_nan(self):
        B = pd.DataFrame([[1.0, 2.0]], index=['LV1'], columns=['S1', 'S2'])
        sample_info = pd.DataFrame({'group': ['A']}, index=['S1'])

        long_df = lv_long_table(B, sample_info, 'group')

        assert long_df.set_index('sample').loc['S2', 'group'] != 'A'
        assert long_df['group'].isna().sum() == 1


class TestQcSeq:
    def test_creates_plots(self, collapsed_data):
        qc_seq(collapsed_data)

        qc_dir = collapsed_data['output_dirs']['qc']
        for name in ('01_mean_expression.pdf', '02_correlation_heatmap.pdf', '03_pca_plot.pdf'):
            assert os.path.exists(os.path.join(qc_dir, name))

    def test_output_suffix(self, collapsed_data):
        qc_seq(collapsed_data, output_suffix='_rerun')

        qc_dir = collapsed_data['output_dirs']['qc']
        assert os.path.exists(os.path.join(qc_dir, '03_pca_plot_rerun.pdf'))


class TestVizSeq:
    def test_creates_plots_and_table(self, plier_data):
        long_df = viz_seq(plier_data)

        viz_dir = plier_data['output_dirs']['viz']
        assert os.path.exists(os.path.join(viz_dir, 'lv_by_category.pdf'))
        assert os.path.exists(os.path.join(plier_data['output_dirs']['tables'], 'lv_long.tsv'))
        assert set(long_df['mycn_status']) <= {'Amplified', 'Nonamplified', 'unknown'}

    def test_explicit_lvs(self, plier_data):
        long_df = viz_seq(plier_data, lvs=['LV1', 'LV2'])

        assert len(long_df) == 2 * len(plier_data['sample_cols'])
        assert os.path.exists(os.path.join(plier_data['output_dirs']['viz'], 'scatter_LV1_LV2.pdf'))

    def test_single_lv_skips_scatter(self, plier_data):
        long_df = viz_seq(plier_data, lvs=['LV3'])

        assert long_df['sample'].nunique() == len(plier_data['sample_cols'])
        assert not any(
            name.startswith('scatter_') for name in os.listdir(plier_data['output_dirs']['viz'])
        )
