# Display and column filtering of alignments.

import logging
import sys
from collections import Counter
from typing import Iterator, List, Optional, TextIO

from Bio.Align import MultipleSeqAlignment
from Bio.Seq import Seq
from Bio.SeqRecord import SeqRecord

from .data_structures import normalize_sequence_type

logger = logging.getLogger(__name__)

GAP = "-"

STANDARD_RESIDUES = {
    "protein": frozenset("ACDEFGHIKLMNPQRSTVWY"),
    "DNA": frozenset("ACGT"),
    "RNA": frozenset("ACGU"),
}


def _check_not_empty(alignment: MultipleSeqAlignment) -> None:
    if alignment is None or len(alignment) == 0:
        raise ValueError("Alignment contains no sequences.")


def _with_columns(alignment: MultipleSeqAlignment, keep: List[int]) -> MultipleSeqAlignment:
    """Returns a copy of the alignment restricted to the column indices in 'keep'."""
    records = []
    for record in alignment:
        sequence = str(record.seq)
        records.append(SeqRecord(
            Seq("".join(sequence[i] for i in keep)),
            id=record.id,
            name=record.name,
            description=record.description,
            annotations=dict(record.annotations),
        ))
    return MultipleSeqAlignment(records, annotations=dict(getattr(alignment, "annotations", None) or {}))


def format_alignment(alignment: MultipleSeqAlignment, chunk_size: int = 60) -> Iterator[str]:
    """
    Yields the lines of a block display of the alignment.

    Every block shows 'chunk_size' columns: one line per sequence with the
    uppercased chunk, the number of residues (non-gap characters) shown so far
    for that sequence and its name, followed by an empty line.
    """
    _check_not_empty(alignment)
    if chunk_size < 1:
        raise ValueError(f"chunk_size must be a positive integer, got {chunk_size}.")

    sequences = [str(record.seq) for record in alignment]
    letters_printed = [0] * len(sequences)
    for start in range(0, alignment.get_alignment_length(), chunk_size):
        for j, record in enumerate(alignment):
            chunk = sequences[j][start:start + chunk_size].upper()
            letters_printed[j] += len(chunk) - chunk.count(GAP)
            yield f"{chunk} {letters_printed[j]} {record.id}"
        yield ""


def print_alignment(alignment: MultipleSeqAlignment, chunk_size: int = 60, file: Optional[TextIO] = None) -> None:
    """Prints the alignment in blocks of chunk_size columns (see format_alignment)."""
    out = file if file is not None else sys.stdout
    for line in format_alignment(alignment, chunk_size):
        print(line, file=out)


def column_statistics(column: str):
    """
    Returns (percent non-gap, percent identity) for one alignment column.

    Identity is the share of identical residues among all pairs of sequences
    where both residues are non-gap; a column without such a pair scores 0.
    """
    residues = [c.upper() for c in column if c != GAP]
    pc_nongap = len(residues) * 100.0 / len(column)

    n = len(residues)
    num_pairs = n * (n - 1) // 2
    if num_pairs == 0:
        return pc_nongap, 0.0
    num_identical = sum(count * (count - 1) // 2 for count in Counter(residues).values())
    return pc_nongap, num_identical * 100.0 / num_pairs


def clean_alignment(alignment: MultipleSeqAlignment, min_pc_nongap: float, min_pc_id: float) -> MultipleSeqAlignment:
    """
    Keeps the alignment columns that are both well populated and conserved.

    A column is kept when its percentage of non-gap residues is at least
    min_pc_nongap and its pairwise identity percentage is at least min_pc_id.

    Args:
        alignment: The alignment to filter; it is not modified.
        min_pc_nongap: Minimal percentage (0-100) of non-gap residues.
        min_pc_id: Minimal percentage (0-100) of identical residue pairs.

    Returns:
        A new MultipleSeqAlignment with the same ids and annotations.
    """
    _check_not_empty(alignment)
    length = alignment.get_alignment_length()

    keep = []
    for i in range(length):
        pc_nongap, pc_id = column_statistics(alignment[:, i])
        if pc_nongap >= min_pc_nongap and pc_id >= min_pc_id:
            keep.append(i)

    logger.info(f"clean_alignment kept {len(keep)} of {length} columns "
                f"(min non-gap {min_pc_nongap}%, min identity {min_pc_id}%).")
    return _with_columns(alignment, keep)


def remove_ambiguous_columns(alignment: MultipleSeqAlignment, seq_type: str) -> MultipleSeqAlignment:
    """
    Drops every column holding a gap or anything other than a standard residue:
    the 20 amino acids for protein, ACGT for DNA, ACGU for RNA.
    """
    _check_not_empty(alignment)
    allowed = STANDARD_RESIDUES[normalize_sequence_type(seq_type)]
    length = alignment.get_alignment_length()

    keep = [i for i in range(length) if all(c.upper() in allowed for c in alignment[:, i])]
    if not keep:
        logger.warning("Every column contains a gap or an ambiguous residue; the cleaned alignment is empty.")
    else:
        logger.debug(f"Removed {length - len(keep)} of {length} columns with gaps or ambiguous residues.")
    return _with_columns(alignment, keep)
