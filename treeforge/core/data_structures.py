# Core data structures shared by the alignment and tree building code.

import logging
from typing import Optional, List, Dict

from Bio import Phylo
from Bio.Align import MultipleSeqAlignment

from ..exceptions import UnsupportedOptionError

logger = logging.getLogger(__name__)

SEQUENCE_TYPES = ("protein", "DNA", "RNA")


def normalize_sequence_type(seq_type: str) -> str:
    """Returns the canonical spelling ("protein", "DNA" or "RNA") of a sequence type."""
    if isinstance(seq_type, str):
        for known in SEQUENCE_TYPES:
            if seq_type.strip().lower() == known.lower():
                return known
    raise UnsupportedOptionError(
        f"Unknown sequence type '{seq_type}'. Expected one of: {', '.join(SEQUENCE_TYPES)}."
    )


def is_nucleotide(seq_type: str) -> bool:
    return normalize_sequence_type(seq_type) in ("DNA", "RNA")


class SequenceRecord:
    """
    One alignment row together with the numeric id used when the row is
    handed to an external program.
    """
    def __init__(self, seq_id: str, sequence: str, internal_id: int, description: Optional[str] = None):
        if not isinstance(seq_id, str) or not seq_id:
            raise ValueError("seq_id must be a non-empty string.")
        if not isinstance(sequence, str):
            raise ValueError("sequence must be a string.")
        if not isinstance(internal_id, int):
            raise ValueError("internal_id must be an integer.")

        self.id: str = seq_id
        self.internal_id: int = internal_id
        self.sequence: str = sequence
        self.description: str = description or ""

    @property
    def length(self) -> int:
        return len(self.sequence)

    def __repr__(self):
        return f"SequenceRecord(id='{self.id}', internal_id={self.internal_id}, length={self.length})"


class SequenceData:
    """
    Registry of the rows of an alignment keyed by their original id, with a
    bidirectional mapping to short numeric ids.

    IQ-TREE and RAxML-NG rewrite characters they do not accept in taxon
    names, so alignments are written out under the numeric ids and the tips
    of the returned trees are renamed afterwards.
    """
    def __init__(self):
        self._sequences: Dict[str, SequenceRecord] = {}
        self._internal_id_map: Dict[int, str] = {}
        self._next_internal_id: int = 1

    @classmethod
    def from_alignment(cls, alignment: MultipleSeqAlignment) -> "SequenceData":
        data = cls()
        for record in alignment:
            if data.add_sequence(record.id, str(record.seq), record.description) is None:
                raise ValueError(f"Duplicate sequence id '{record.id}' in alignment.")
        return data

    def add_sequence(self, seq_id: str, sequence: str, description: Optional[str] = None) -> Optional[SequenceRecord]:
        """
        Adds a sequence to the registry.

        Returns:
            The created SequenceRecord, or None if seq_id is already registered.
        """
        if seq_id in self._sequences:
            logger.error(f"Sequence ID '{seq_id}' already exists. Cannot add duplicate.")
            return None

        record = SequenceRecord(seq_id=seq_id, sequence=sequence,
                                internal_id=self._next_internal_id, description=description)
        self._next_internal_id += 1

        self._sequences[record.id] = record
        self._internal_id_map[record.internal_id] = record.id
        logger.debug(f"Registered sequence: ID='{record.id}', InternalID={record.internal_id}, Length={record.length}")
        return record

    def get_sequence_by_id(self, seq_id: str) -> Optional[SequenceRecord]:
        return self._sequences.get(seq_id)

    def get_original_id(self, internal_id: int) -> Optional[str]:
        """Retrieves the original sequence ID from an internal numerical ID."""
        return self._internal_id_map.get(internal_id)

    def get_internal_id(self, seq_id: str) -> Optional[int]:
        """Retrieves the internal numerical ID from an original sequence ID."""
        record = self._sequences.get(seq_id)
        return record.internal_id if record else None

    def get_all_sequences(self) -> List[SequenceRecord]:
        """Returns the registered records in insertion order."""
        return list(self._sequences.values())

    def __len__(self) -> int:
        return len(self._sequences)

    def __iter__(self):
        return iter(self._sequences.values())

    def __contains__(self, seq_id: str) -> bool:
        return seq_id in self._sequences


class LikelihoodFit:
    """
    Result of one maximum-likelihood run.

    Attributes:
        model: Substitution model name as requested (e.g. "HKY", "WAG").
        engine_model: Model string passed to the program (e.g. "HKY+G4").
        tree: Optimised tree with the original sequence ids on its tips.
        log_likelihood: Final log-likelihood reported by the program, if found.
        engine: "iqtree" or "raxml-ng".
    """
    def __init__(self, model: str, engine_model: str, tree: Phylo.BaseTree.Tree,
                 log_likelihood: Optional[float], engine: str):
        self.model = model
        self.engine_model = engine_model
        self.tree = tree
        self.log_likelihood = log_likelihood
        self.engine = engine

    def __repr__(self):
        return (f"LikelihoodFit(model='{self.model}', engine='{self.engine}', "
                f"log_likelihood={self.log_likelihood}, tips={self.tree.count_terminals()})")
