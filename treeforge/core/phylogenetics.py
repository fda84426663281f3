# Phylogenetic tree construction: distance, parsimony and maximum-likelihood trees.

import copy
import logging
import os
import sys
import tempfile
from typing import Dict, Iterable, List, Optional, TextIO, Union

from Bio import Phylo, SeqIO
from Bio.Align import MultipleSeqAlignment
from Bio.Phylo.Consensus import bootstrap, get_support
from Bio.Phylo.TreeConstruction import (
    DistanceCalculator,
    DistanceMatrix,
    DistanceTreeConstructor,
    NNITreeSearcher,
    ParsimonyScorer,
    ParsimonyTreeConstructor,
)
from Bio.Seq import Seq
from Bio.SeqRecord import SeqRecord as BioSeqRecord
from matplotlib.figure import Figure

from .alignment_tools import remove_ambiguous_columns
from .data_structures import LikelihoodFit, SequenceData, is_nucleotide, normalize_sequence_type
from .file_parser import parse_newick
from ..config import settings_manager
from ..exceptions import ExternalToolError, UnsupportedOptionError
from ..utils.external_tools import (
    parse_iqtree_log_likelihood,
    parse_raxml_ng_log_likelihood,
    run_iqtree,
    run_raxml_ng,
)

logger = logging.getLogger(__name__)

CLUSTERING_METHODS = ("nj", "upgma")
PARSIMONY_METHODS = ("fitch", "sankoff")
PLOT_STYLES = ("phylogram", "cladogram", "ascii")
ML_ENGINES = ("iqtree", "raxml-ng")

# Substitution models fitted by max_likelihood, with their spelling in
# IQ-TREE and in RAxML-NG.
NUCLEOTIDE_ML_MODELS = {
    "JC": ("JC", "JC"),
    "F81": ("F81", "F81"),
    "K80": ("K80", "K80"),
    "HKY": ("HKY", "HKY"),
    "TrNe": ("TNe", "TN93ef"),
    "TrN": ("TN", "TN93"),
    "TPM1": ("K3P", "K81"),
    "K81": ("K3P", "K81"),
    "TPM1u": ("K3Pu", "K81uf"),
    "TPM2": ("TPM2", "TPM2"),
    "TPM2u": ("TPM2u", "TPM2uf"),
    "TPM3": ("TPM3", "TPM3"),
    "TPM3u": ("TPM3u", "TPM3uf"),
    "TIM1e": ("TIMe", "TIM1"),
    "TIM1": ("TIM", "TIM1uf"),
    "TIM2e": ("TIM2e", "TIM2"),
    "TIM2": ("TIM2", "TIM2uf"),
    "TIM3e": ("TIM3e", "TIM3"),
    "TIM3": ("TIM3", "TIM3uf"),
    "TVMe": ("TVMe", "TVMef"),
    "TVM": ("TVM", "TVM"),
    "SYM": ("SYM", "SYM"),
    "GTR": ("GTR", "GTR"),
}

PROTEIN_ML_MODELS = {
    "WAG": ("WAG", "WAG"),
    "JTT": ("JTT", "JTT"),
    "LG": ("LG", "LG"),
    "Dayhoff": ("Dayhoff", "DAYHOFF"),
    "cpREV": ("cpREV", "CPREV"),
    "mtmam": ("mtMAM", "MTMAM"),
    "mtArt": ("mtART", "MTART"),
    "MtZoa": ("mtZOA", "MTZOA"),
    "mtREV24": ("mtREV", "MTREV"),
    "VT": ("VT", "VT"),
    "RtREV": ("rtREV", "RTREV"),
    "HIVw": ("HIVw", "HIVW"),
    "HIVb": ("HIVb", "HIVB"),
    "FLU": ("FLU", "FLU"),
    "Blosum62": ("Blosum62", "BLOSUM62"),
    "Dayhoff_DCMut": ("DCMut", "DCMUT"),
    "JTT_DCMut": ("JTTDCMut", "JTT-DCMUT"),
}

DEFAULT_NUCLEOTIDE_ML_MODEL = "F81"
DEFAULT_PROTEIN_ML_MODEL = "WAG"
GAMMA_CATEGORIES = 4

OutgroupType = Optional[Union[str, Iterable[str]]]


# --- Option dispatch ---

def _check_alignment(alignment: MultipleSeqAlignment) -> None:
    if alignment is None or len(alignment) < 3:
        raise ValueError("At least three aligned sequences are needed to build a tree.")
    if alignment.get_alignment_length() == 0:
        raise ValueError("The alignment has no columns.")
    seen, duplicates = set(), []
    for record in alignment:
        if record.id in seen and record.id not in duplicates:
            duplicates.append(record.id)
        seen.add(record.id)
    if duplicates:
        raise ValueError(f"Duplicate sequence ids in alignment: {', '.join(duplicates)}.")


def distance_models(seq_type: str) -> List[str]:
    """Names of the distance models DistanceCalculator offers for this sequence type."""
    if is_nucleotide(seq_type):
        return ["identity"] + list(DistanceCalculator.dna_models)
    return ["identity"] + list(DistanceCalculator.protein_models)


def _distance_calculator(seq_type: str, model: str) -> DistanceCalculator:
    model_key = model.lower() if isinstance(model, str) else model
    if model_key not in distance_models(seq_type):
        raise UnsupportedOptionError(
            f"Distance model '{model}' is not available for {normalize_sequence_type(seq_type)} sequences. "
            f"Available models: {', '.join(distance_models(seq_type))}."
        )
    return DistanceCalculator(model_key)


def _option(value: str, allowed: Iterable[str], what: str) -> str:
    key = value.lower() if isinstance(value, str) else value
    if key not in allowed:
        raise UnsupportedOptionError(f"Unknown {what} '{value}'. Expected one of: {', '.join(allowed)}.")
    return key


def ml_models(seq_type: str) -> Dict[str, tuple]:
    return NUCLEOTIDE_ML_MODELS if is_nucleotide(seq_type) else PROTEIN_ML_MODELS


def _resolve_ml_models(seq_type: str, ml_model: Optional[str]) -> List[str]:
    """Returns the canonical model names to fit: all of them for 'all', else a single one."""
    table = ml_models(seq_type)
    if ml_model is None:
        return [DEFAULT_NUCLEOTIDE_ML_MODEL if is_nucleotide(seq_type) else DEFAULT_PROTEIN_ML_MODEL]
    if ml_model.lower() == "all":
        return list(table)
    for name in table:
        if name.lower() == ml_model.lower():
            return [name]
    raise UnsupportedOptionError(
        f"Unknown maximum-likelihood model '{ml_model}' for {normalize_sequence_type(seq_type)} sequences. "
        f"Available models: {', '.join(table)} or 'all'."
    )


# --- Tree post-processing ---

def _tip_labels(ids: Iterable[str]) -> Dict[str, str]:
    """
    Maps sequence ids to tip labels without whitespace, made unique by a numeric
    suffix. The ids themselves must be distinct (see _check_alignment).
    """
    labels = {}
    used = set()
    for seq_id in ids:
        base = "".join(seq_id.split()) or seq_id
        label, suffix = base, 1
        while label in used:
            label = f"{base}_{suffix}"
            suffix += 1
        used.add(label)
        labels[seq_id] = label
    return labels


def _apply_labels(tree: Phylo.BaseTree.Tree, labels: Dict[str, str]) -> None:
    for clade in tree.find_clades():
        if clade.is_terminal():
            clade.name = labels.get(clade.name, clade.name)
        else:
            clade.name = None  # drop "Inner<n>" names given by the constructors


def _root_tree(tree: Phylo.BaseTree.Tree, outgroup: OutgroupType, labels: Dict[str, str]) -> None:
    if outgroup is None:
        return
    names = [outgroup] if isinstance(outgroup, str) else list(outgroup)
    if not names:
        return
    tips = {clade.name for clade in tree.get_terminals()}
    targets = []
    for name in names:
        target = labels.get(name, "".join(name.split()))
        if target not in tips:
            raise ValueError(f"Outgroup '{name}' is not a tip of the tree.")
        targets.append(target)
    tree.root_with_outgroup(targets[0], *targets[1:])
    logger.debug(f"Tree rooted with outgroup: {', '.join(targets)}")


def _finish_tree(tree: Phylo.BaseTree.Tree, labels: Dict[str, str], outgroup: OutgroupType) -> Phylo.BaseTree.Tree:
    _apply_labels(tree, labels)
    _root_tree(tree, outgroup, labels)
    tree.ladderize()
    return tree


def _copy_alignment(alignment: MultipleSeqAlignment) -> MultipleSeqAlignment:
    # ParsimonyScorer sorts the alignment it is given in place
    return MultipleSeqAlignment([copy.copy(record) for record in alignment],
                                annotations=dict(getattr(alignment, "annotations", None) or {}))


# --- Drawing ---

def draw_tree(tree: Phylo.BaseTree.Tree, style: str = "phylogram", output_path: Optional[str] = None,
              file: Optional[TextIO] = None) -> Optional[Figure]:
    """
    Draws a tree for a first look at the result.

    Args:
        tree: The tree to draw; support values are shown next to the clades.
        style: "phylogram" (branch lengths), "cladogram" (unit branch lengths)
               or "ascii" (text, written to 'file' or stdout).
        output_path: Image file to save the figure to (format from the extension).

    Returns:
        The matplotlib Figure, or None for the ascii style.
    """
    style = _option(style, PLOT_STYLES, "plot style")
    if style == "ascii":
        Phylo.draw_ascii(tree, file=file if file is not None else sys.stdout)
        return None

    to_draw = tree
    if style == "cladogram":
        to_draw = copy.deepcopy(tree)
        for clade in to_draw.find_clades():
            clade.branch_length = None

    def label_func(clade):
        return clade.name if clade.is_terminal() else None

    figure = Figure(figsize=(8, max(3.0, 0.35 * tree.count_terminals())))
    axes = figure.add_subplot(1, 1, 1)
    Phylo.draw(to_draw, axes=axes, do_show=False, show_confidence=True, label_func=label_func)
    axes.set_title(f"{style} ({tree.count_terminals()} tips)")
    if output_path:
        figure.savefig(output_path, bbox_inches="tight")
        logger.info(f"Tree drawing saved to '{output_path}'.")
    return figure


# --- Distance trees ---

def _distance_tree(alignment: MultipleSeqAlignment, calculator: DistanceCalculator, clustering: str) -> Phylo.BaseTree.Tree:
    constructor = DistanceTreeConstructor(calculator, clustering)
    return constructor.build_tree(alignment)


def make_tree(alignment: MultipleSeqAlignment, seq_type: str, model: str = "identity", clustering: str = "nj",
              outgroup: OutgroupType = None, plot: Optional[str] = None, bootstrap_replicates: Optional[int] = None,
              plot_file: Optional[str] = None) -> Phylo.BaseTree.Tree:
    """
    Builds a distance tree with bootstrap support.

    Args:
        alignment: Aligned DNA, RNA or protein sequences.
        seq_type: "DNA", "RNA" or "protein".
        model: Distance model for Bio.Phylo.TreeConstruction.DistanceCalculator
               ("identity" or a substitution matrix name such as "blosum62").
        clustering: "nj" (neighbor-joining) or "upgma".
        outgroup: Tip name (or names) to root the tree on; unrooted if None.
        plot: None, "phylogram", "cladogram" or "ascii".
        bootstrap_replicates: Number of resampled alignments; defaults to the
                              'phylogenetics.bootstrap_replicates' setting, 0 disables.
        plot_file: Image file for the drawing.

    Returns:
        A Bio.Phylo tree whose clade confidences hold the bootstrap support in percent.
    """
    _check_alignment(alignment)
    seq_type = normalize_sequence_type(seq_type)
    calculator = _distance_calculator(seq_type, model)
    clustering = _option(clustering, CLUSTERING_METHODS, "clustering method")
    if plot is not None:
        plot = _option(plot, PLOT_STYLES, "plot style")
    labels = _tip_labels(record.id for record in alignment)

    def build(aln: MultipleSeqAlignment) -> Phylo.BaseTree.Tree:
        return _finish_tree(_distance_tree(aln, calculator, clustering), labels, outgroup)

    logger.info(f"Building {clustering} tree from {len(alignment)} {seq_type} sequences with '{model}' distances.")
    tree = build(alignment)

    if bootstrap_replicates is None:
        bootstrap_replicates = settings_manager.get_setting("phylogenetics.bootstrap_replicates", 100)
    if bootstrap_replicates > 0:
        logger.info(f"Computing bootstrap support from {bootstrap_replicates} replicates.")
        replicate_trees = [build(resampled) for resampled in bootstrap(alignment, bootstrap_replicates)]
        tree = get_support(tree, replicate_trees, len_trees=len(replicate_trees))

    if plot is not None:
        draw_tree(tree, plot, output_path=plot_file)
    return tree


# --- Parsimony ---

def _unit_cost_matrix(alignment: MultipleSeqAlignment) -> DistanceMatrix:
    """Sankoff cost matrix over the characters present: 0 on the diagonal, 1 elsewhere."""
    states = sorted({c for record in alignment for c in str(record.seq)})
    matrix = [[1] * i + [0] for i in range(len(states))]
    return DistanceMatrix(states, matrix)


def max_parsimony(alignment: MultipleSeqAlignment, seq_type: str, clustering: str = "nj",
                  outgroup: OutgroupType = None, method: str = "sankoff") -> Phylo.BaseTree.Tree:
    """
    Builds a maximum-parsimony tree by NNI search from a distance starting tree.

    Args:
        alignment: Aligned DNA, RNA or protein sequences.
        seq_type: "DNA", "RNA" or "protein".
        clustering: Method for the starting tree, "nj" or "upgma".
        outgroup: Tip name (or names) to root the tree on; unrooted if None.
        method: "sankoff" (unit cost matrix) or "fitch".
    """
    _check_alignment(alignment)
    seq_type = normalize_sequence_type(seq_type)
    clustering = _option(clustering, CLUSTERING_METHODS, "clustering method")
    method = _option(method, PARSIMONY_METHODS, "parsimony method")
    labels = _tip_labels(record.id for record in alignment)
    working = _copy_alignment(alignment)

    starting_tree = _distance_tree(working, DistanceCalculator("identity"), clustering)
    scorer = ParsimonyScorer(_unit_cost_matrix(working)) if method == "sankoff" else ParsimonyScorer()
    searcher = NNITreeSearcher(scorer)
    tree = ParsimonyTreeConstructor(searcher, starting_tree).build_tree(working)
    logger.info(f"{method.capitalize()} parsimony score of the {seq_type} tree: {scorer.get_score(tree, working)}")

    return _finish_tree(tree, labels, outgroup)


# --- Maximum likelihood ---

def create_phylip_with_internal_ids(sequence_data: SequenceData, output_phylip_path: str) -> bool:
    """
    Creates a PHYLIP file from SequenceData, using internal numerical IDs as sequence names.

    Returns:
        True if successful, False otherwise.
    """
    if not sequence_data or len(sequence_data) == 0:
        logger.error("No sequence data provided to create PHYLIP file.")
        return False

    biopython_records = [BioSeqRecord(Seq(seq_rec.sequence), id=str(seq_rec.internal_id), description="")
                         for seq_rec in sequence_data.get_all_sequences()]
    try:
        count = SeqIO.write(biopython_records, output_phylip_path, "phylip-relaxed")
    except (OSError, ValueError) as e:
        logger.error(f"Error writing PHYLIP file with internal IDs to '{output_phylip_path}': {e}")
        return False
    logger.debug(f"Wrote {count} sequences with internal IDs to PHYLIP file: {output_phylip_path}")
    return count > 0


def write_tree_with_internal_ids(tree: Phylo.BaseTree.Tree, sequence_data: SequenceData, output_path: str) -> None:
    """Writes a topology-only copy of 'tree' whose tips carry the internal IDs."""
    renamed = copy.deepcopy(tree)
    for clade in renamed.find_clades():
        if clade.is_terminal():
            internal_id = sequence_data.get_internal_id(clade.name)
            if internal_id is None:
                raise ValueError(f"Tip '{clade.name}' has no registered sequence.")
            clade.name = str(internal_id)
        else:
            clade.name = None
        clade.confidence = None
        if clade.branch_length is not None and clade.branch_length < 0:
            clade.branch_length = 0.0
    renamed.root.branch_length = None
    Phylo.write(renamed, output_path, "newick")


def map_tree_tips_to_original_ids(tree: Phylo.BaseTree.Tree, sequence_data: SequenceData) -> Phylo.BaseTree.Tree:
    """
    Maps tip names of a tree returned by IQ-TREE or RAxML-NG (internal IDs)
    back to the original sequence IDs.
    """
    for tip in tree.get_terminals():
        try:
            original_id = sequence_data.get_original_id(int(tip.name))
        except (TypeError, ValueError):
            logger.warning(f"Tip name '{tip.name}' is not a valid integer internal ID. Leaving as is.")
            continue
        if original_id:
            logger.debug(f"Mapping tip '{tip.name}' to original ID: '{original_id}'")
            tip.name = original_id
        else:
            logger.warning(f"Could not find original ID for tip name (internal ID): '{tip.name}'. Leaving as is.")
    return tree


def _fit_model(model: str, engine: str, seq_type: str, alignment_path: str, starting_tree_path: str,
               working_dir: str, sequence_data: SequenceData) -> LikelihoodFit:
    iqtree_name, raxml_name = ml_models(seq_type)[model]
    engine_model = f"{iqtree_name if engine == 'iqtree' else raxml_name}+G{GAMMA_CATEGORIES}"
    prefix = os.path.join(working_dir, f"fit_{model}")
    data_type = "DNA" if is_nucleotide(seq_type) else "AA"
    threads = settings_manager.get_setting("phylogenetics.threads", 1)
    seed = settings_manager.get_setting("phylogenetics.seed", 12345)

    logger.info(f"Fitting {engine_model} with {engine}.")
    if engine == "iqtree":
        success, result = run_iqtree(alignment_path, prefix, working_dir, engine_model, sequence_type=data_type,
                                     starting_tree_path=starting_tree_path, threads=threads, seed=seed)
        report_path, parse_log_likelihood = prefix + ".iqtree", parse_iqtree_log_likelihood
    else:
        success, result = run_raxml_ng(alignment_path, prefix, working_dir, engine_model, sequence_type=data_type,
                                       starting_tree_path=starting_tree_path, threads=threads, seed=seed)
        report_path, parse_log_likelihood = prefix + ".raxml.log", parse_raxml_ng_log_likelihood
    if not success:
        raise ExternalToolError(f"{model}: {result}")

    tree = parse_newick(result)
    if tree is None:
        raise ExternalToolError(f"{model}: could not read the tree written by {engine} ({result}).")
    tree = map_tree_tips_to_original_ids(tree, sequence_data)
    return LikelihoodFit(model, engine_model, tree, parse_log_likelihood(report_path), engine)


def max_likelihood(alignment: MultipleSeqAlignment, seq_type: str, model: str = "identity", clustering: str = "nj",
                   ml_model: Optional[str] = None, outgroup: OutgroupType = None, clean: bool = True,
                   engine: Optional[str] = None) -> Union[LikelihoodFit, Dict[str, LikelihoodFit]]:
    """
    Optimises a maximum-likelihood tree with IQ-TREE or RAxML-NG, starting
    from a distance tree, under a substitution model with gamma-distributed
    rates (4 categories).

    Args:
        alignment: Aligned DNA, RNA or protein sequences.
        seq_type: "DNA", "RNA" or "protein".
        model: Distance model of the starting tree.
        clustering: Clustering method of the starting tree, "nj" or "upgma".
        ml_model: Substitution model name (see NUCLEOTIDE_ML_MODELS and
                  PROTEIN_ML_MODELS), "all" to fit every model of the sequence
                  type, or None for F81 (nucleotides) / WAG (protein).
        outgroup: Tip name (or names) to root the optimised trees on.
        clean: Remove the columns holding gaps or non-standard residues first.
        engine: "iqtree" or "raxml-ng"; defaults to the 'phylogenetics.ml_engine' setting.

    Returns:
        A LikelihoodFit, or for ml_model="all" a dict of model name -> LikelihoodFit.

    Raises:
        ExternalToolError: if the program is missing or a run fails.
    """
    _check_alignment(alignment)
    seq_type = normalize_sequence_type(seq_type)
    calculator = _distance_calculator(seq_type, model)
    clustering = _option(clustering, CLUSTERING_METHODS, "clustering method")
    engine = _option(engine or settings_manager.get_setting("phylogenetics.ml_engine", "iqtree"),
                     ML_ENGINES, "maximum-likelihood engine")
    models = _resolve_ml_models(seq_type, ml_model)
    labels = _tip_labels(record.id for record in alignment)

    working = remove_ambiguous_columns(alignment, seq_type) if clean else alignment
    if working.get_alignment_length() == 0:
        raise ValueError("No column left after removing gaps and ambiguous residues; retry with clean=False.")

    starting_tree = _distance_tree(working, calculator, clustering)
    sequence_data = SequenceData.from_alignment(working)

    fits: Dict[str, LikelihoodFit] = {}
    with tempfile.TemporaryDirectory(prefix="treeforge_ml_") as working_dir:
        alignment_path = os.path.join(working_dir, "alignment.phy")
        if not create_phylip_with_internal_ids(sequence_data, alignment_path):
            raise ExternalToolError(f"Could not write the alignment for {engine}.")
        starting_tree_path = os.path.join(working_dir, "starting_tree.nwk")
        write_tree_with_internal_ids(starting_tree, sequence_data, starting_tree_path)

        for name in models:
            fit = _fit_model(name, engine, seq_type, alignment_path, starting_tree_path, working_dir, sequence_data)
            _finish_tree(fit.tree, labels, outgroup)
            fits[name] = fit
            logger.info(f"{name}: log-likelihood {fit.log_likelihood}")

    if ml_model is not None and ml_model.lower() == "all":
        return fits
    return fits[models[0]]
