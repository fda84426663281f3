# Reading and writing of alignment and tree files.

import logging
import os
from typing import Optional, List, TextIO

from Bio import AlignIO, Phylo
from Bio.Align import MultipleSeqAlignment
from Bio.Seq import Seq
from Bio.SeqRecord import SeqRecord

from .data_structures import normalize_sequence_type
from ..exceptions import UnsupportedOptionError

logger = logging.getLogger(__name__)

# Format names accepted by load_alignment, mapped to Bio.AlignIO format names.
# "phylip" is tried as relaxed PHYLIP first (Clustal Omega writes long names).
ALIGNMENT_FORMATS = {
    "fasta": "fasta",
    "fa": "fasta",
    "phylip": "phylip-relaxed",
    "phylip-relaxed": "phylip-relaxed",
    "phylip-strict": "phylip",
    "clustal": "clustal",
    "aln": "clustal",
    "msf": "msf",
    "mase": "mase",
    "nexus": "nexus",
    "stockholm": "stockholm",
}


def _resolve_format(file_format: str) -> str:
    key = file_format.strip().lower() if isinstance(file_format, str) else file_format
    if key not in ALIGNMENT_FORMATS:
        raise UnsupportedOptionError(
            f"Unsupported alignment format '{file_format}'. "
            f"Supported formats: {', '.join(sorted(ALIGNMENT_FORMATS))}."
        )
    return ALIGNMENT_FORMATS[key]


def _parse_mase(handle: TextIO) -> MultipleSeqAlignment:
    """
    Reads a MASE alignment.

    Lines starting with ';;' are comments on the whole file. Each entry is one
    or more ';' comment lines, a line with the sequence name, then the
    sequence itself over any number of lines.
    """
    file_comments: List[str] = []
    records: List[SeqRecord] = []
    entry_comments: List[str] = []
    name: Optional[str] = None
    seq_parts: List[str] = []

    def flush():
        records.append(SeqRecord(Seq("".join(seq_parts)), id=name, name=name,
                                 description=" ".join(c for c in entry_comments if c)))

    for line_number, raw_line in enumerate(handle, start=1):
        line = raw_line.rstrip("\r\n")
        if line.startswith(";;"):
            file_comments.append(line[2:].strip())
        elif line.startswith(";"):
            if name is not None:
                flush()
                name, seq_parts, entry_comments = None, [], []
            entry_comments.append(line[1:].strip())
        elif name is None:
            if not line.strip():
                continue
            if not entry_comments:
                raise ValueError(f"Line {line_number}: expected a ';' comment line before sequence name '{line.strip()}'.")
            name = line.strip()
        else:
            seq_parts.append("".join(line.split()))

    if name is not None:
        flush()
    if not records:
        raise ValueError("No sequences found in MASE file.")

    annotations = {}
    comment = "\n".join(file_comments).strip()
    if comment:
        annotations["comment"] = comment
    return MultipleSeqAlignment(records, annotations=annotations)


def load_alignment(filepath: str, file_format: str, seq_type: str = "protein") -> MultipleSeqAlignment:
    """
    Loads an alignment file.

    Args:
        filepath: Path to the alignment file.
        file_format: One of fasta (fa), phylip, clustal, msf, mase, nexus, stockholm.
        seq_type: "protein" (default), "DNA" or "RNA"; stored on every record
                  as annotations["molecule_type"].

    Returns:
        A Bio.Align.MultipleSeqAlignment.

    Raises:
        FileNotFoundError: if filepath does not exist.
        UnsupportedOptionError: for an unknown format or sequence type.
        ValueError: if the file is malformed for the given format.
    """
    molecule_type = normalize_sequence_type(seq_type)
    biopython_format = _resolve_format(file_format)
    if not os.path.exists(filepath):
        logger.error(f"Alignment file not found: {filepath}")
        raise FileNotFoundError(f"Alignment file not found: {filepath}")

    logger.info(f"Loading '{filepath}' as '{file_format}' {molecule_type} alignment.")
    try:
        if biopython_format == "mase":
            with open(filepath, "r") as handle:
                alignment = _parse_mase(handle)
        elif biopython_format == "phylip-relaxed" and file_format.strip().lower() == "phylip":
            try:
                alignment = AlignIO.read(filepath, "phylip-relaxed")
            except ValueError as e:
                logger.debug(f"Relaxed PHYLIP parsing failed ({e}); retrying with strict PHYLIP.")
                alignment = AlignIO.read(filepath, "phylip")
        else:
            alignment = AlignIO.read(filepath, biopython_format)
    except ValueError as e:
        logger.error(f"Error parsing '{filepath}' as '{file_format}': {e}")
        raise

    for record in alignment:
        record.annotations["molecule_type"] = molecule_type

    logger.info(f"Loaded {len(alignment)} sequences of length {alignment.get_alignment_length()} from '{filepath}'.")
    return alignment


def write_alignment(alignment: MultipleSeqAlignment, filepath: str, file_format: str = "fasta") -> bool:
    """
    Writes an alignment with Bio.AlignIO.

    Returns:
        True if writing was successful, False otherwise.
    """
    if alignment is None or len(alignment) == 0:
        logger.warning("No alignment provided to write. Aborting.")
        return False
    biopython_format = _resolve_format(file_format)
    if biopython_format == "mase":
        raise UnsupportedOptionError("Writing MASE files is not supported; choose fasta, phylip, clustal, msf or nexus.")

    if biopython_format == "phylip" and any(len(record.id) > 10 for record in alignment):
        logger.warning(f"Strict PHYLIP truncates sequence IDs to 10 characters in '{filepath}'.")
    try:
        count = AlignIO.write(alignment, filepath, biopython_format)
    except OSError as e:
        logger.error(f"File system error writing alignment to '{filepath}': {e}", exc_info=True)
        return False
    logger.info(f"Wrote {count} alignment(s) to '{filepath}' in {file_format} format.")
    return True


def parse_newick(filepath: str) -> Optional[Phylo.BaseTree.Tree]:
    """
    Parses a Newick tree file.

    Returns:
        A Biopython Tree object, or None if the file is missing or malformed.
    """
    if not os.path.exists(filepath):
        logger.error(f"Tree file not found: {filepath}")
        return None
    try:
        tree = Phylo.read(filepath, "newick")
    except Exception as e:  # the Newick parser raises several error types
        logger.error(f"Error parsing Newick tree from '{filepath}': {e}")
        return None
    logger.info(f"Parsed Newick tree from '{filepath}'. Found {tree.count_terminals()} terminals.")
    return tree


def write_newick(tree: Phylo.BaseTree.Tree, filepath: str) -> bool:
    """
    Writes a Biopython Tree object to a Newick file.

    Returns:
        True if writing was successful, False otherwise.
    """
    if tree is None:
        logger.warning("No tree object provided to write. Aborting.")
        return False
    try:
        Phylo.write(tree, filepath, "newick")
    except OSError as e:
        logger.error(f"File system error writing Newick tree to '{filepath}': {e}", exc_info=True)
        return False
    logger.info(f"Wrote tree to '{filepath}' in Newick format.")
    return True
