# TreeForge: sequence retrieval, alignment handling and tree building

from .config import settings_manager
from .core import (
    retrieve_seqs,
    load_alignment,
    print_alignment,
    clean_alignment,
    make_tree,
    max_parsimony,
    max_likelihood,
)

__version__ = '0.1.0'

__all__ = [
    'settings_manager',
    'retrieve_seqs',
    'load_alignment',
    'print_alignment',
    'clean_alignment',
    'make_tree',
    'max_parsimony',
    'max_likelihood',
]

import logging
# Library code only logs; the command line (treeforge.cli) installs handlers.
logging.getLogger(__name__).addHandler(logging.NullHandler())
