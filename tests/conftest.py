"""Shared test fixtures for rnaplier pipeline tests."""

import matplotlib
matplotlib.use('Agg')

import numpy as np
import pandas as pd
import pytest
import yaml

N_GENES = 60
N_SAMPLES = 12


def make_expression(seed=42):
    """Expression table with composite IDs, one higher/lower duplicate and one tie."""
    rng = np.random.default_rng(seed)

    samples = [f"SRR{1000 + i}" for i in range(N_SAMPLES)]
    amplified = np.array([1.0] * (N_SAMPLES // 2) + [0.0] * (N_SAMPLES - N_SAMPLES // 2))
    second_factor = rng.normal(0, 1, N_SAMPLES)

    values = 5 + rng.normal(0, 0.3, (N_GENES, N_SAMPLES))
    values[:20] += 2 * amplified
    values[20:40] += 1.5 * second_factor

    ids = [f"ENSG{str(i).zfill(11)}_GENE{i}" for i in range(N_GENES)]
    df = pd.DataFrame(values, columns=samples)
    df.insert(0, 'Gene', ids)

    # Lower-expressed duplicate of GENE0, exact duplicate (tie) of GENE1,
    # and a symbol that itself contains the delimiter
    extra = pd.DataFrame(
        [
            ['ENSG99999999990_GENE0', *(values[0] - 1)],
            ['ENSG99999999991_GENE1', *values[1]],
            ['ENSG99999999992_RP11_34P13', *(values[50] + 0.1)],
        ],
        columns=df.columns,
    )
    return pd.concat([df, extra], ignore_index=True), samples, amplified


def make_metadata(samples, amplified):
    return pd.DataFrame({
        'refinebio_accession_code': samples,
        'mycn_status': np.where(amplified > 0, 'Amplified', 'Nonamplified'),
    })


def write_gmt(path):
    gene_sets = {
        'SET_AMPLIFIED': [f"GENE{i}" for i in range(0, 15)],
        'SET_SECOND': [f"GENE{i}" for i in range(20, 35)],
        'SET_NOISE': [f"GENE{i}" for i in range(40, 55)] + ['NOT_EXPRESSED'],
        'SET_TINY': ['GENE0', 'GENE1'],
    }
    with open(path, 'w') as f:
        for name, genes in gene_sets.items():
            f.write('\t'.join([name, 'http://example.org'] + genes) + '\n')
    return gene_sets


def write_inputs(tmp_path, expression_df=None, metadata_df=None, **overrides):
    """Write expression, metadata, GMT and config files; return the config path."""
    if expression_df is None or metadata_df is None:
        default_expr, samples, amplified = make_expression()
        if expression_df is None:
            expression_df = default_expr
        if metadata_df is None:
            metadata_df = make_metadata(samples, amplified)

    expression_path = str(tmp_path / 'expression.tsv')
    metadata_path = str(tmp_path / 'metadata.tsv')
    gmt_path = str(tmp_path / 'pathways.gmt')

    expression_df.to_csv(expression_path, sep='\t', index=False)
    metadata_df.to_csv(metadata_path, sep='\t', index=False)
    write_gmt(gmt_path)

    config = {
        'experiment': {
            'name': 'Test_Experiment',
            'description': 'Unit test experiment',
        },
        'data_paths': {
            'expression_file': expression_path,
            'metadata_file': metadata_path,
            'gene_sets': [gmt_path],
            'output_dir': str(tmp_path / 'results'),
        },
        'data_columns': {
            'gene_id': 'Gene',
            'sample_id': 'refinebio_accession_code',
            'category': 'mycn_status',
        },
        'identifiers': {'delimiter': '_'},
        'collapse': {'seed': 12345},
        'plier': {
            'k': 3,
            'min_genes': 10,
            'max_iter': 50,
            'fdr_cutoff': 0.05,
        },
    }
    for section, values in overrides.items():
        config.setdefault(section, {}).update(values)

    config_path = str(tmp_path / 'test_config.yaml')
    with open(config_path, 'w') as f:
        yaml.dump(config, f)

    return config_path


@pytest.fixture
def sample_config(tmp_path):
    """Create a minimal YAML config with matching expression, metadata and GMT files."""
    return write_inputs(tmp_path), tmp_path


@pytest.fixture
def prepped_data(sample_config):
    """Run prep_seq and return the result for downstream tests."""
    from rnaplier import prep_seq

    config_path, tmp_path = sample_config
    return prep_seq(config_path)


@pytest.fixture
def collapsed_data(prepped_data):
    from rnaplier import collapse_seq

    return collapse_seq(prepped_data)


@pytest.fixture
def plier_data(collapsed_data):
    from rnaplier import plier_seq

    return plier_seq(collapsed_data)
