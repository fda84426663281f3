#!/usr/bin/env python3
# Command line entry point for TreeForge.

import sys
import argparse
import logging
import json

from Bio import Phylo, SeqIO

from treeforge import settings_manager
from treeforge.core import (
    retrieve_seqs,
    load_alignment,
    write_alignment,
    write_newick,
    print_alignment,
    clean_alignment,
    make_tree,
    max_parsimony,
    max_likelihood,
    draw_tree,
    ALIGNMENT_FORMATS,
)
from treeforge.core.phylogenetics import CLUSTERING_METHODS, PARSIMONY_METHODS, PLOT_STYLES, ML_ENGINES
from treeforge.exceptions import TreeForgeError

logger = logging.getLogger(__name__)


def _add_alignment_arguments(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("alignment", help="Alignment file.")
    parser.add_argument("-f", "--format", required=True, choices=sorted(ALIGNMENT_FORMATS),
                        help="Alignment file format.")
    parser.add_argument("-t", "--type", dest="seq_type", default="protein",
                        help="Sequence type: protein (default), DNA or RNA.")


def _add_tree_arguments(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("--clustering", default="nj", choices=CLUSTERING_METHODS,
                        help="Clustering method for the (starting) tree.")
    parser.add_argument("--outgroup", action="append", help="Tip to root the tree on (repeatable).")
    parser.add_argument("-o", "--out", help="Write the tree(s) in Newick format to this file.")


def _load(args):
    return load_alignment(args.alignment, args.format, args.seq_type)


def _output_tree(tree, args) -> None:
    if args.out:
        if not write_newick(tree, args.out):
            raise TreeForgeError(f"Could not write tree to '{args.out}'.")
        print(f"Tree written to {args.out}")
    else:
        Phylo.write(tree, sys.stdout, "newick")


def cmd_fetch(args) -> int:
    sequences = retrieve_seqs(args.accessions, args.database, email=args.email)
    for name in sequences:
        print(name, file=sys.stderr)
    handle = open(args.out, "w") if args.out else sys.stdout
    try:
        SeqIO.write(sequences.values(), handle, "fasta")
    finally:
        if args.out:
            handle.close()
    return 0


def cmd_show(args) -> int:
    chunk_size = args.chunk_size or settings_manager.get_setting("display.chunk_size", 60)
    print_alignment(_load(args), chunk_size=chunk_size)
    return 0


def cmd_clean(args) -> int:
    alignment = _load(args)
    cleaned = clean_alignment(alignment, args.min_nongap, args.min_identity)
    print(f"Kept {cleaned.get_alignment_length()} of {alignment.get_alignment_length()} columns.")
    if args.out:
        if not write_alignment(cleaned, args.out, args.out_format):
            return 1
        print(f"Cleaned alignment written to {args.out}")
    else:
        print_alignment(cleaned, chunk_size=settings_manager.get_setting("display.chunk_size", 60))
    return 0


def cmd_tree(args) -> int:
    if args.plot in ("phylogram", "cladogram") and not args.plot_file:
        raise TreeForgeError(f"--plot {args.plot} needs --plot-file to save the drawing.")
    tree = make_tree(_load(args), args.seq_type, model=args.model, clustering=args.clustering,
                     outgroup=args.outgroup, plot=args.plot, bootstrap_replicates=args.bootstrap,
                     plot_file=args.plot_file)
    _output_tree(tree, args)
    return 0


def cmd_parsimony(args) -> int:
    tree = max_parsimony(_load(args), args.seq_type, clustering=args.clustering,
                         outgroup=args.outgroup, method=args.method)
    if args.plot:
        draw_tree(tree, args.plot)
    _output_tree(tree, args)
    return 0


def cmd_ml(args) -> int:
    result = max_likelihood(_load(args), args.seq_type, model=args.model, clustering=args.clustering,
                            ml_model=args.ml_model, outgroup=args.outgroup, clean=not args.no_clean,
                            engine=args.engine)
    fits = result if isinstance(result, dict) else {result.model: result}
    print(f"{'model':<16}{'engine model':<20}log-likelihood")
    for name, fit in fits.items():
        print(f"{name:<16}{fit.engine_model:<20}{fit.log_likelihood}")

    if len(fits) == 1:
        _output_tree(next(iter(fits.values())).tree, args)
    elif args.out:
        count = Phylo.write([fit.tree for fit in fits.values()], args.out, "newick")
        print(f"{count} trees written to {args.out} (in the order listed above)")
    else:
        print()
        for name, fit in fits.items():
            print(f"# {name}")
            Phylo.write(fit.tree, sys.stdout, "newick")
    return 0


def cmd_settings(args) -> int:
    for assignment in args.set or []:
        key, sep, raw_value = assignment.partition("=")
        if not sep:
            logger.error(f"Expected KEY=VALUE, got '{assignment}'.")
            return 2
        try:
            value = json.loads(raw_value)
        except json.JSONDecodeError:
            value = raw_value
        settings_manager.update_setting(key, value)
    if args.set and not settings_manager.save_settings():
        return 1
    print(f"# {settings_manager.config_file_path}")
    print(json.dumps(settings_manager.settings, indent=2))
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="treeforge",
                                     description="Sequence retrieval, alignment cleaning and phylogenetic trees.")
    parser.add_argument("--debug", action="store_true", help="Enable debug logging.")
    parser.add_argument("-v", "--verbose", action="store_true", help="Log progress messages.")
    subparsers = parser.add_subparsers(dest="command", required=True)

    fetch = subparsers.add_parser("fetch", help="Retrieve sequences by accession number.")
    fetch.add_argument("accessions", nargs="+", help="Accession numbers.")
    fetch.add_argument("-d", "--database", default="genbank", help="Database, e.g. genbank or swissprot.")
    fetch.add_argument("--email", help="Contact e-mail for NCBI (default: setting entrez.email).")
    fetch.add_argument("-o", "--out", help="Write the sequences in FASTA format to this file.")
    fetch.set_defaults(func=cmd_fetch)

    show = subparsers.add_parser("show", help="Print an alignment in blocks.")
    _add_alignment_arguments(show)
    show.add_argument("-c", "--chunk-size", type=int, help="Columns per block (default: setting display.chunk_size).")
    show.set_defaults(func=cmd_show)

    clean = subparsers.add_parser("clean", help="Remove gappy and variable alignment columns.")
    _add_alignment_arguments(clean)
    clean.add_argument("--min-nongap", type=float, required=True, help="Minimal percentage of non-gap residues.")
    clean.add_argument("--min-identity", type=float, required=True, help="Minimal percentage of identical pairs.")
    clean.add_argument("-o", "--out", help="Write the cleaned alignment to this file.")
    clean.add_argument("--out-format", default="fasta", help="Format of the cleaned alignment file.")
    clean.set_defaults(func=cmd_clean)

    tree = subparsers.add_parser("tree", help="Distance tree with bootstrap support.")
    _add_alignment_arguments(tree)
    _add_tree_arguments(tree)
    tree.add_argument("-m", "--model", default="identity", help="Distance model.")
    tree.add_argument("-b", "--bootstrap", type=int,
                      help="Bootstrap replicates (default: setting phylogenetics.bootstrap_replicates).")
    tree.add_argument("--plot", choices=PLOT_STYLES, help="Draw the tree.")
    tree.add_argument("--plot-file", help="Save the drawing to this image file.")
    tree.set_defaults(func=cmd_tree)

    parsimony = subparsers.add_parser("parsimony", help="Maximum-parsimony tree.")
    _add_alignment_arguments(parsimony)
    _add_tree_arguments(parsimony)
    parsimony.add_argument("--method", default="sankoff", choices=PARSIMONY_METHODS, help="Parsimony scoring.")
    parsimony.add_argument("--plot", choices=("ascii",), help="Print the tree as text.")
    parsimony.set_defaults(func=cmd_parsimony)

    ml = subparsers.add_parser("ml", help="Maximum-likelihood tree with IQ-TREE or RAxML-NG.")
    _add_alignment_arguments(ml)
    _add_tree_arguments(ml)
    ml.add_argument("-m", "--model", default="identity", help="Distance model of the starting tree.")
    ml.add_argument("--ml-model", help="Substitution model, or 'all' (default: F81 / WAG).")
    ml.add_argument("--engine", choices=ML_ENGINES, help="Program to run (default: setting phylogenetics.ml_engine).")
    ml.add_argument("--no-clean", action="store_true", help="Keep columns with gaps or ambiguous residues.")
    ml.set_defaults(func=cmd_ml)

    settings = subparsers.add_parser("settings", help="Show or change settings.")
    settings.add_argument("--set", action="append", metavar="KEY=VALUE",
                          help="Update a setting, e.g. entrez.email=me@example.org (repeatable).")
    settings.set_defaults(func=cmd_settings)
    return parser


def main(argv=None) -> int:
    args = build_parser().parse_args(argv)

    if args.debug:
        log_level = logging.DEBUG
    elif args.verbose:
        log_level = logging.INFO
    else:
        log_level = logging.WARNING
    logging.basicConfig(stream=sys.stderr, level=log_level,
                        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s')

    if args.debug:
        logger.debug("Loaded settings:\n%s", json.dumps(settings_manager.settings, indent=2))

    try:
        return args.func(args)
    except (TreeForgeError, ValueError, OSError) as e:
        logger.error(str(e), exc_info=args.debug)
        print(f"treeforge: error: {e}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    sys.exit(main())
