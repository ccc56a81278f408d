"""Tests for rnaplier.prep module."""

import os

import pandas as pd
import pytest

from rnaplier import prep_seq, split_identifier
from rnaplier.exceptions import InputDataError, MalformedInputError

from conftest import make_expression, make_metadata, write_inputs


class TestSplitIdentifier:
    @pytest.mark.parametrize('identifier', [
        'ENSG00000232995_RGS5',
        'ENSG00000272079_DGCR5',
        'X_',
        '_Y',
        'ENSG00000228439_AC011043.1',
    ])
    def test_round_trip(self, identifier):
        stable_id, symbol = split_identifier(identifier)
        assert stable_id + '_' + symbol == identifier

    def test_splits_on_first_delimiter_only(self):
        assert split_identifier('A_B_C') == ('A', 'B_C')

    def test_custom_delimiter(self):
        assert split_identifier('ENSG1|TP53|x', delimiter='|') == ('ENSG1', 'TP53|x')

    def test_missing_delimiter_raises(self):
        with pytest.raises(MalformedInputError) as excinfo:
            split_identifier('ENSG00000232995')

        assert excinfo.value.key == 'ENSG00000232995'
        assert excinfo.value.stage == 'parse'
        assert isinstance(excinfo.value, InputDataError)

    def test_non_string_raises(self):
        with pytest.raises(MalformedInputError):
            split_identifier(float('nan'))


class TestPrepSeq:
    def test_returns_required_keys(self, prepped_data):
        assert 'df' in prepped_data
        assert 'config' in prepped_data
        assert 'sample_cols' in prepped_data
        assert 'sample_info' in prepped_data
        assert 'metadata' in prepped_data
        assert 'output_dirs' in prepped_data

    def test_identifier_replaced_by_stable_id_and_symbol(self, prepped_data):
        df = prepped_data['df']

        assert list(df.columns[:2]) == ['stable_id', 'symbol']
        assert 'Gene' not in df.columns
        assert list(df.columns[2:]) == prepped_data['sample_cols']

    def test_symbols_keep_later_delimiters(self, prepped_data):
        symbols = set(prepped_data['df']['symbol'])
        assert 'RP11_34P13' in symbols

    def test_duplicates_are_kept_until_collapse(self, prepped_data):
        df = prepped_data['df']
        assert (df['symbol'] == 'GENE0').sum() == 2
        assert prepped_data['metadata']['n_duplicated_symbols'] == 2

    def test_sample_info_aligned_to_columns(self, prepped_data):
        sample_info = prepped_data['sample_info']

        assert list(sample_info.index) == prepped_data['sample_cols']
        assert set(sample_info['mycn_status']) == {'Amplified', 'Nonamplified'}

    def test_metadata_counts_are_consistent(self, prepped_data):
        metadata = prepped_data['metadata']
        df = prepped_data['df']

        assert metadata['n_rows'] == len(df)
        assert metadata['n_genes'] == df['symbol'].nunique()
        assert metadata['n_samples'] == len(prepped_data['sample_cols'])

    def test_saves_parsed_table_and_checkpoint(self, prepped_data):
        output_dirs = prepped_data['output_dirs']

        assert os.path.exists(os.path.join(output_dirs['tables'], 'parsed_expression.tsv'))
        assert os.path.exists(os.path.join(output_dirs['base'], 'data_after_prep.pkl'))

    def test_missing_metadata_sample_is_tolerated(self, tmp_path):
        expression, samples, amplified = make_expression()
        metadata = make_metadata(samples, amplified).iloc[1:]
        config_path = write_inputs(tmp_path, expression_df=expression, metadata_df=metadata)

        data = prep_seq(config_path)
        assert pd.isna(data['sample_info'].loc[samples[0], 'mycn_status'])


class TestPrepSeqErrors:
    def test_identifier_without_delimiter_aborts(self, tmp_path):
        expression, _, _ = make_expression()
        expression.loc[5, 'Gene'] = 'BADID'
        config_path = write_inputs(tmp_path, expression_df=expression)

        with pytest.raises(MalformedInputError) as excinfo:
            prep_seq(config_path)
        assert excinfo.value.key == 'BADID'

    def test_non_numeric_sample_value_aborts(self, tmp_path):
        expression, samples, _ = make_expression()
        expression[samples[3]] = expression[samples[3]].astype(object)
        expression.loc[7, samples[3]] = 'n/a?'
        config_path = write_inputs(tmp_path, expression_df=expression)

        with pytest.raises(MalformedInputError) as excinfo:
            prep_seq(config_path)
        assert excinfo.value.key == expression.loc[7, 'Gene']
        assert samples[3] in str(excinfo.value)

    def test_missing_identifier_column_aborts(self, tmp_path):
        config_path = write_inputs(tmp_path, data_columns={'gene_id': 'Ensembl'})

        with pytest.raises(MalformedInputError, match='Ensembl'):
            prep_seq(config_path)

    def test_missing_category_column_aborts(self, tmp_path):
        config_path = write_inputs(tmp_path, data_columns={'category': 'histology'})

        with pytest.raises(MalformedInputError, match='histology'):
            prep_seq(config_path)

    def test_short_expression_row_aborts(self, tmp_path):
        config_path = write_inputs(tmp_path)
        path = tmp_path / 'expression.tsv'
        lines = path.read_text().splitlines()
        fields = lines[5].split('\t')
        lines[5] = '\t'.join(fields[:-2])
        path.write_text('\n'.join(lines) + '\n')

        with pytest.raises(MalformedInputError) as excinfo:
            prep_seq(config_path)

        assert excinfo.value.key == fields[0]
        assert excinfo.value.stage == 'parse'

    def test_long_expression_row_aborts(self, tmp_path):
        config_path = write_inputs(tmp_path)
        path = tmp_path / 'expression.tsv'
        lines = path.read_text().splitlines()
        key = lines[8].split('\t')[0]
        lines[8] += '\t7.5'
        path.write_text('\n'.join(lines) + '\n')

        with pytest.raises(MalformedInputError) as excinfo:
            prep_seq(config_path)

        assert excinfo.value.key == key

    def test_short_metadata_row_aborts(self, tmp_path):
        config_path = write_inputs(tmp_path)
        path = tmp_path / 'metadata.tsv'
        lines = path.read_text().splitlines()
        sample = lines[2].split('\t')[0]
        lines[2] = sample
        path.write_text('\n'.join(lines) + '\n')

        with pytest.raises(MalformedInputError) as excinfo:
            prep_seq(config_path)

        assert excinfo.value.key == sample
