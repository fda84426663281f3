# Utility functions for TreeForge

from .external_tools import (
    run_iqtree,
    run_raxml_ng,
    parse_iqtree_log_likelihood,
    parse_raxml_ng_log_likelihood,
    _check_tool_path
)

__all__ = [
    'run_iqtree',
    'run_raxml_ng',
    'parse_iqtree_log_likelihood',
    'parse_raxml_ng_log_likelihood',
    '_check_tool_path'
]

import logging
logging.getLogger(__name__).addHandler(logging.NullHandler())
