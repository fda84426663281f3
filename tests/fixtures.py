# Small alignments shared by the test modules.

from Bio import SeqIO
from Bio.Align import MultipleSeqAlignment
from Bio.Seq import Seq
from Bio.SeqRecord import SeqRecord

DNA_FASTA = """>Alpha
ACTGCTAGCTAGCTAGCTAGCTAGCTAGCTAGCTAGCTAG
>Beta
ACTGCTAGCTAGCTAGCTAGCTAGCTAGCTAGCTAGCTTG
>Gamma
ACTGCTAGGTAGCTAGCTAGCTACCTAGCTAGCTAGCTAG
>Delta
ACTGGTAGCTAGCTTGCTAGCTAGCTAGCAAGCTAGCAAG
>Epsilon
TCTGGTAGCTAGCTTGCTAGCTAGGTAGCAAGCTAGCAAG
"""

PROTEIN_FASTA = """>Human
MKTAYIAKQRQISFVKSHFSRQ-LEERLGLIEVQ
>Chimp
MKTAYIAKQRQISFVKSHFSRQ-LEERLGLIEVQ
>Mouse
MKTAYIAKQRQISFVKSHFSRQALEERLGLIEVH
>Chicken
MKSAYIAKQRQLSFVKAHFSRQALEERLGLVEVQ
"""


def make_alignment(rows, molecule_type="DNA"):
    """Builds a MultipleSeqAlignment from (id, sequence) pairs."""
    return MultipleSeqAlignment([
        SeqRecord(Seq(sequence), id=seq_id, name=seq_id, description="",
                  annotations={"molecule_type": molecule_type})
        for seq_id, sequence in rows
    ])


def dna_alignment():
    rows = []
    lines = DNA_FASTA.strip().splitlines()
    for header, sequence in zip(lines[::2], lines[1::2]):
        rows.append((header[1:], sequence))
    return make_alignment(rows, "DNA")


def protein_alignment():
    rows = []
    lines = PROTEIN_FASTA.strip().splitlines()
    for header, sequence in zip(lines[::2], lines[1::2]):
        rows.append((header[1:], sequence))
    return make_alignment(rows, "protein")


def fake_iqtree(log_likelihood=-1234.5, calls=None):
    """Stands in for run_iqtree: copies the starting tree and writes a report."""
    def run(alignment_path, prefix, working_dir, model, sequence_type=None, starting_tree_path=None,
            threads=1, seed=None):
        if calls is not None:
            calls.append({"model": model, "sequence_type": sequence_type, "seed": seed,
                          "records": list(SeqIO.parse(alignment_path, "phylip-relaxed"))})
        tree_path = prefix + ".treefile"
        with open(starting_tree_path) as src, open(tree_path, "w") as dst:
            dst.write(src.read())
        with open(prefix + ".iqtree", "w") as report:
            report.write(f"Log-likelihood of the tree: {log_likelihood} (s.e. 12.3)\n")
        return True, tree_path
    return run


def fake_raxml_ng(log_likelihood=-987.25):
    def run(alignment_path, prefix, working_dir, model, sequence_type=None, starting_tree_path=None,
            threads=1, seed=12345):
        tree_path = prefix + ".raxml.bestTree"
        with open(starting_tree_path) as src, open(tree_path, "w") as dst:
            dst.write(src.read())
        with open(prefix + ".raxml.log", "w") as log:
            log.write(f"Final LogLikelihood: {log_likelihood}\n")
        return True, tree_path
    return run
