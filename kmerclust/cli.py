"""
Command-line interface for kmerclust.
"""

import argparse
import logging
import json
import sys
from pathlib import Path

from .alphabet import get_alphabet
from .counting import DEFAULT_MAX_AMBIGUOUS, count_sequences
from .distances import full_distance_matrix
from .divisive import DivisiveClustering
from .embedding import mbed
from .kmeans import DEFAULT_NSTART
from .otu import OTUClustering
from .representatives import REPRESENTATIVE_METHODS
from .utils import (
    load_sequences_from_fasta,
    validate_sequences,
    save_counts,
    save_distance_matrix,
    save_tree,
    save_otus,
    convert_to_json_serializable
)


def setup_logging(verbose: bool = False):
    """Configure logging based on verbosity level."""
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format='%(asctime)s - %(levelname)s - %(message)s',
        datefmt='%Y-%m-%d %H:%M:%S'
    )


def default_output_path(input_path: Path, command: str, output_format: str = "tsv") -> str:
    """Output path next to the input file, named after the subcommand."""
    suffixes = {
        'count': '.counts.tsv',
        'distance': '.distances.csv',
        'cluster': '.nwk',
    }
    if command == 'otu':
        suffix = {'tsv': '.otus.tsv', 'fasta': '.otus.fasta', 'text': '.otus.txt'}[output_format]
    else:
        suffix = suffixes[command]
    return str(input_path.with_suffix('')) + suffix


def build_parser() -> argparse.ArgumentParser:
    common = argparse.ArgumentParser(add_help=False)
    common.add_argument(
        'input',
        help='Input FASTA file'
    )
    common.add_argument(
        '-k', '--k',
        type=int,
        default=3,
        help='K-mer length (default: 3)'
    )
    common.add_argument(
        '--alphabet',
        choices=['dna', 'rna', 'protein'],
        default='dna',
        help='Residue alphabet (default: dna)'
    )
    common.add_argument(
        '--max-ambiguous',
        type=int,
        default=DEFAULT_MAX_AMBIGUOUS,
        help=f'Maximum ambiguity codes within one k-mer window (default: {DEFAULT_MAX_AMBIGUOUS})'
    )
    common.add_argument(
        '-o', '--output',
        help='Output file (default: derived from the input file name)'
    )
    common.add_argument(
        '-t', '--threads',
        type=int,
        help='Number of worker processes (default: auto-detect, 0: single-process)'
    )
    common.add_argument(
        '-v', '--verbose',
        action='store_true',
        help='Enable verbose logging'
    )

    clustering = argparse.ArgumentParser(add_help=False)
    clustering.add_argument(
        '--nstart',
        type=int,
        default=DEFAULT_NSTART,
        help=f'K-means restarts per split (default: {DEFAULT_NSTART})'
    )
    clustering.add_argument(
        '--seed',
        type=int,
        default=0,
        help='Random seed (default: 0)'
    )
    clustering.add_argument(
        '--features',
        choices=['counts', 'embedded'],
        default='counts',
        help='Split on raw k-mer counts or on distances to seed sequences (default: counts)'
    )
    clustering.add_argument(
        '--n-seeds',
        type=int,
        help='Seed count for embedded features (default: ceil(log2(n)^2))'
    )
    clustering.add_argument(
        '--export-json',
        help='Export the tree (and OTU assignment) as JSON'
    )

    parser = argparse.ArgumentParser(
        description='kmerclust: Alignment-free k-mer clustering of biological sequences',
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  kmerclust count input.fasta -k 4                 # Creates input.counts.tsv
  kmerclust distance input.fasta                   # Creates input.distances.csv
  kmerclust distance input.fasta --embed           # n x t distances to automatic seeds
  kmerclust distance input.fasta --seeds s1,s7     # n x 2 distances to s1 and s7
  kmerclust cluster input.fasta -o tree.nwk
  kmerclust otu input.fasta --threshold 0.3 --format fasta
        """
    )
    subparsers = parser.add_subparsers(dest='command', required=True)

    subparsers.add_parser('count', parents=[common],
                          help='Count k-mers for every sequence')

    distance = subparsers.add_parser('distance', parents=[common],
                                     help='Compute k-mer distances')
    distance.add_argument(
        '--embed',
        action='store_true',
        help='Compute distances to automatically selected seed sequences only'
    )
    distance.add_argument(
        '--seeds',
        help='Comma-separated sequence IDs to use as seeds (implies --embed)'
    )
    distance.add_argument(
        '--n-seeds',
        type=int,
        help='Seed count for automatic seed selection (default: ceil(log2(n)^2))'
    )
    distance.add_argument(
        '--nstart',
        type=int,
        default=DEFAULT_NSTART,
        help=f'K-means restarts for seed selection (default: {DEFAULT_NSTART})'
    )
    distance.add_argument(
        '--seed',
        type=int,
        default=0,
        help='Random seed for seed selection (default: 0)'
    )
    distance.add_argument(
        '--missing',
        choices=['raise', 'nan'],
        default='raise',
        help='What to do with pairs too short for k: abort or write NaN (default: raise)'
    )

    subparsers.add_parser('cluster', parents=[common, clustering],
                          help='Build a divisive cluster tree (Newick output)')

    otu = subparsers.add_parser('otu', parents=[common, clustering],
                                help='Assign sequences to OTUs at a distance threshold')
    otu.add_argument(
        '--threshold',
        type=float,
        required=True,
        help='Maximum k-mer distance within an OTU'
    )
    otu.add_argument(
        '--method',
        choices=list(REPRESENTATIVE_METHODS),
        default='central',
        help='How OTU representatives are chosen (default: central)'
    )
    otu.add_argument(
        '--format',
        choices=['tsv', 'fasta', 'text'],
        default='tsv',
        help='Output format (default: tsv)'
    )

    return parser


def main():
    """Main entry point for the kmerclust CLI."""
    parser = build_parser()
    args = parser.parse_args()

    # Setup logging
    setup_logging(args.verbose)

    try:
        input_path = Path(args.input)
        if not input_path.exists():
            logging.error(f"Input file not found: {args.input}")
            sys.exit(1)

        alphabet = get_alphabet(args.alphabet)

        logging.info(f"Loading sequences from {args.input}")
        sequences, headers, _ = load_sequences_from_fasta(str(input_path))
        logging.info(f"Loaded {len(sequences)} sequences")

        is_valid, errors = validate_sequences(sequences, alphabet)
        if not is_valid:
            logging.error("Invalid sequences found:")
            for error in errors:
                logging.error(f"  {error}")
            sys.exit(1)

        output_format = getattr(args, 'format', 'tsv')
        if args.output is None:
            args.output = default_output_path(input_path, args.command, output_format)

        kmer_counts = count_sequences(sequences, args.k, alphabet=alphabet, labels=headers,
                                      max_ambiguous=args.max_ambiguous, num_threads=args.threads)

        if args.command == 'count':
            save_counts(kmer_counts, args.output)

        elif args.command == 'distance':
            if args.seeds or args.embed:
                seeds = [s.strip() for s in args.seeds.split(',') if s.strip()] if args.seeds else None
                matrix = mbed(kmer_counts, seeds=seeds, n_seeds=args.n_seeds, nstart=args.nstart,
                              rng_seed=args.seed, missing=args.missing)
            else:
                matrix = full_distance_matrix(kmer_counts, missing=args.missing, num_threads=args.threads)
            save_distance_matrix(matrix, args.output)

        elif args.command == 'cluster':
            clustering = DivisiveClustering(
                nstart=args.nstart,
                rng_seed=args.seed,
                features=args.features,
                n_seeds=args.n_seeds,
                num_threads=args.threads,
            )
            tree = clustering.build(kmer_counts)
            save_tree(tree, args.output)
            if args.export_json:
                logging.info(f"Exporting tree to {args.export_json}")
                with open(args.export_json, 'w') as f:
                    json.dump(convert_to_json_serializable(tree.to_dict()), f, indent=2)

        elif args.command == 'otu':
            clustering = OTUClustering(
                threshold=args.threshold,
                method=args.method,
                nstart=args.nstart,
                rng_seed=args.seed,
                features=args.features,
                n_seeds=args.n_seeds,
                num_threads=args.threads,
            )
            assignment = clustering.build(kmer_counts)
            save_otus(assignment, args.output, sequences=sequences, format=args.format)
            if args.export_json:
                logging.info(f"Exporting OTU assignment to {args.export_json}")
                with open(args.export_json, 'w') as f:
                    json.dump(convert_to_json_serializable(assignment.to_dict()), f, indent=2)

        logging.info(f"Results written to {args.output}")

    except KeyboardInterrupt:
        logging.info("Interrupted by user")
        sys.exit(1)
    except Exception as e:
        logging.error(f"Error: {e}")
        if args.verbose:
            import traceback
            traceback.print_exc()
        sys.exit(1)


if __name__ == '__main__':
    main()
