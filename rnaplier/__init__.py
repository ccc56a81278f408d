"""
RNA-seq PLIER Pipeline
======================

A reusable Python package for collapsing bulk RNA-seq expression to one row
per gene and exploring it with PLIER (pathway-level information extractor).

Main Functions
--------------
prep_seq()      - Load expression + metadata, split composite gene IDs
collapse_seq()  - Keep the highest-mean row per gene symbol (seeded ties)
qc_seq()        - Generate quality control plots
plier_seq()     - PLIER matrix factorization with prior gene sets
viz_seq()       - Latent variable plots by sample category
run_pipeline()  - Run all steps from one config file
save_data()     - Save analysis data for later
load_data()     - Load saved analysis data

Example Workflow
----------------
>>> from rnaplier import prep_seq, collapse_seq, plier_seq, viz_seq
>>>
>>> data = prep_seq('config/experiment.yaml')
>>> data = collapse_seq(data)
>>> data = plier_seq(data)
>>> viz_seq(data)
"""

from .prep import prep_seq, split_identifier
from .collapse import (
    collapse_seq,
    row_mean,
    row_means,
    resolve_duplicates,
    assemble_matrix,
    DuplicateResolution,
)
from .qc import qc_seq
from .plier import plier_seq, plier, PLIERResult
from .visualization import viz_seq, lv_long_table
from .pipeline import run_pipeline
from .utils import save_data, load_data
from .exceptions import (
    PipelineError,
    InputDataError,
    MalformedInputError,
    EmptyAggregationError,
    InvariantViolationError,
)


__version__ = "0.1.0"

__all__ = [
    'prep_seq',
    'collapse_seq',
    'qc_seq',
    'plier_seq',
    'viz_seq',
    'run_pipeline',
    'save_data',
    'load_data',
    'split_identifier',
    'row_mean',
    'row_means',
    'resolve_duplicates',
    'assemble_matrix',
    'DuplicateResolution',
    'plier',
    'PLIERResult',
    'lv_long_table',
    'PipelineError',
    'InputDataError',
    'MalformedInputError',
    'EmptyAggregationError',
    'InvariantViolationError',
]
