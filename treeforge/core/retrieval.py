# Retrieval of sequences from remote databases by accession number.

import logging
from typing import Dict, Iterable, Optional

from Bio import Entrez, SeqIO
from Bio.SeqRecord import SeqRecord

from ..config import settings_manager
from ..exceptions import UnsupportedOptionError

logger = logging.getLogger(__name__)

# Bank names as used by ACNUC servers and NCBI, mapped to the Entrez database
# that holds the same accessions.
DATABASES = {
    "genbank": "nucleotide",
    "embl": "nucleotide",
    "ena": "nucleotide",
    "refseq": "nucleotide",
    "nucleotide": "nucleotide",
    "swissprot": "protein",
    "uniprot": "protein",
    "genpept": "protein",
    "protein": "protein",
}


def _entrez_database(database: str) -> str:
    key = database.strip().lower() if isinstance(database, str) else database
    if key not in DATABASES:
        raise UnsupportedOptionError(
            f"Unknown sequence database '{database}'. Known databases: {', '.join(sorted(DATABASES))}."
        )
    return DATABASES[key]


def _configure_entrez(email: Optional[str], api_key: Optional[str]) -> None:
    Entrez.email = email or settings_manager.get_setting("entrez.email") or None
    Entrez.api_key = api_key or settings_manager.get_setting("entrez.api_key") or None
    if not Entrez.email:
        logger.warning("No e-mail configured for NCBI Entrez (setting 'entrez.email'); NCBI may block requests.")


def fetch_sequence(accession: str, database: str = "genbank") -> SeqRecord:
    """Fetches a single sequence in FASTA form from the Entrez database matching 'database'."""
    entrez_db = _entrez_database(database)
    handle = Entrez.efetch(db=entrez_db, id=accession, rettype="fasta", retmode="text")
    try:
        record = SeqIO.read(handle, "fasta")
    finally:
        handle.close()
    return record


def retrieve_seqs(accessions: Iterable[str], database: str, email: Optional[str] = None,
                  api_key: Optional[str] = None) -> Dict[str, SeqRecord]:
    """
    Retrieves DNA, RNA or protein sequences by accession number.

    One query is sent per accession, in the order given.

    Args:
        accessions: Accession numbers, e.g. ['P06747', 'P0C569'].
        database: Bank to search, e.g. 'genbank' or 'swissprot'.
        email: Contact address sent to NCBI; defaults to the 'entrez.email' setting.
        api_key: NCBI API key; defaults to the 'entrez.api_key' setting.

    Returns:
        A dict keyed by "<accession> length <n>" holding the retrieved SeqRecords.
        A repeated accession gets its own entry with a " #2", " #3", ... suffix.
    """
    if isinstance(accessions, str):
        accessions = [accessions]
    entrez_db = _entrez_database(database)
    _configure_entrez(email, api_key)

    sequences: Dict[str, SeqRecord] = {}
    fetched: Dict[str, SeqRecord] = {}
    for accession in accessions:
        key_suffix = ""
        if accession in fetched:
            # one entry per requested accession, the repeat is not queried again
            record = fetched[accession]
            repeat = 2
            while f"{accession} length {len(record.seq)} #{repeat}" in sequences:
                repeat += 1
            key_suffix = f" #{repeat}"
            logger.warning(f"Accession {accession} requested more than once; reusing the retrieved sequence.")
        else:
            logger.info(f"retrieving sequence {accession} ...")
            record = fetch_sequence(accession, entrez_db)
            fetched[accession] = record
        sequences[f"{accession} length {len(record.seq)}{key_suffix}"] = record

    logger.info(f"Retrieved {len(sequences)} sequences from '{database}' ({entrez_db}).")
    return sequences
