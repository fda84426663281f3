# Core functionality for TreeForge

from .data_structures import SequenceRecord, SequenceData, LikelihoodFit, normalize_sequence_type
from .retrieval import retrieve_seqs, fetch_sequence
from .file_parser import (
    load_alignment,
    write_alignment,
    parse_newick,
    write_newick,
    ALIGNMENT_FORMATS
)
from .alignment_tools import (
    format_alignment,
    print_alignment,
    clean_alignment,
    remove_ambiguous_columns
)
from .phylogenetics import (
    make_tree,
    max_parsimony,
    max_likelihood,
    draw_tree,
    create_phylip_with_internal_ids,
    map_tree_tips_to_original_ids
)

__all__ = [
    # Data Structures
    'SequenceRecord',
    'SequenceData',
    'LikelihoodFit',
    'normalize_sequence_type',
    # Retrieval
    'retrieve_seqs',
    'fetch_sequence',
    # File I/O
    'load_alignment',
    'write_alignment',
    'parse_newick',
    'write_newick',
    'ALIGNMENT_FORMATS',
    # Alignment display and cleaning
    'format_alignment',
    'print_alignment',
    'clean_alignment',
    'remove_ambiguous_columns',
    # Phylogenetics
    'make_tree',
    'max_parsimony',
    'max_likelihood',
    'draw_tree',
    'create_phylip_with_internal_ids',
    'map_tree_tips_to_original_ids',
]

import logging
logging.getLogger(__name__).addHandler(logging.NullHandler())
