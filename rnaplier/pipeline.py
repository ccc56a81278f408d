"""
End-to-end runner for the rnaplier pipeline.
"""

import yaml

from .collapse import collapse_seq
from .exceptions import PipelineError
from .plier import plier_seq
from .prep import prep_seq
from .qc import qc_seq
from .visualization import viz_seq


def run_pipeline(config_path, skip_qc=False, skip_plots=False):
    """
    Run prep, collapse, QC, PLIER and plotting in one batch.

    Any PipelineError aborts the run and propagates unchanged; each one
    already names its stage. Unreadable files (OSError) and bad config
    values (ValueError, YAML errors) are re-raised as PipelineError tagged
    with the step that was running and, where known, the offending path.

    Example
    -------
    >>> data = run_pipeline('config/experiment.yaml')
    >>> data['plier'].summary.head()
    """
    stage = 'prep'
    try:
        data = prep_seq(config_path)

        stage = 'collapse'
        data = collapse_seq(data)

        if not skip_qc:
            stage = 'qc'
            qc_seq(data)

        stage = 'plier'
        data = plier_seq(data)

        if not skip_plots:
            stage = 'viz'
            viz_seq(data)

    except (OSError, ValueError, yaml.YAMLError) as e:
        key = getattr(e, 'filename', None)
        if key is None and stage == 'prep':
            key = config_path
        raise PipelineError(str(e), key=key, stage=stage) from e

    return data
