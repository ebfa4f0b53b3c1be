"""
Utility functions for kmerclust.

This module provides helpers for sequence loading, input validation, worker
pool sizing and writing results to disk.
"""

import csv
import logging
import os
from pathlib import Path
from typing import Dict, List, Optional, Tuple

import numpy as np
from Bio import SeqIO
from Bio.Seq import Seq
from Bio.SeqRecord import SeqRecord


# Below this many units of work, auto-detection stays in-process
AUTO_PARALLEL_MIN_TASKS = 200


def resolve_num_workers(num_threads: Optional[int], n_tasks: int) -> int:
    """
    Decide how many worker processes to use.

    Args:
        num_threads: Requested workers (None: auto-detect up to 4, 0: single-process)
        n_tasks: Number of independent units of work

    Returns:
        Number of workers; 0 or 1 means run in-process
    """
    if num_threads is None:
        if n_tasks < AUTO_PARALLEL_MIN_TASKS:
            return 0
        num_threads = min(os.cpu_count() or 4, 4)
    if num_threads < 0:
        raise ValueError(f"num_threads must be non-negative, got {num_threads}")
    return max(0, min(num_threads, n_tasks))


def load_sequences_from_fasta(fasta_path: str) -> Tuple[List[str], List[str], Dict[str, str]]:
    """
    Load sequences from a FASTA file.

    Args:
        fasta_path: Path to the FASTA file

    Returns:
        Tuple of (sequences, headers, header_mapping) where:
        - sequences is a list of upper-cased residue strings
        - headers is a list of sequence identifiers
        - header_mapping is a dict from sequence ID to full header (ID + description)
    """
    sequences = []
    headers = []
    header_mapping = {}

    try:
        for record in SeqIO.parse(fasta_path, "fasta"):
            sequences.append(str(record.seq).upper())
            headers.append(record.id)
            header_mapping[record.id] = record.description if record.description else record.id
    except Exception as e:
        logging.error(f"Error reading FASTA file: {e}")
        raise

    return sequences, headers, header_mapping


def validate_sequences(sequences: List[str], alphabet) -> Tuple[bool, List[str]]:
    """
    Validate sequences against an alphabet.

    Args:
        sequences: List of residue strings
        alphabet: Alphabet the sequences should be drawn from

    Returns:
        Tuple of (is_valid, error_messages)
    """
    errors = []

    if not sequences:
        return False, ["No sequences provided"]

    for i, seq in enumerate(sequences):
        if not seq:
            errors.append(f"Sequence {i+1} is empty")
            continue

        invalid_chars = {c for c in set(seq) if not alphabet.is_recognized(c)}
        if invalid_chars:
            errors.append(f"Sequence {i+1} contains invalid characters: {sorted(invalid_chars)}")

    return len(errors) == 0, errors


def save_counts(kmer_counts, output_path: str) -> None:
    """Write count vectors as TSV: one row per sequence, one column per k-mer."""
    names = kmer_counts.kmer_names()
    with open(output_path, 'w', newline='') as f:
        writer = csv.writer(f, delimiter='\t')
        writer.writerow(["sequence_id"] + names)
        for label, row in zip(kmer_counts.labels, kmer_counts.counts):
            writer.writerow([label] + [f"{value:g}" for value in row])
    logging.debug(f"Wrote {kmer_counts.n} x {len(names)} count matrix to {output_path}")


def save_distance_matrix(distance_matrix, output_path: str) -> None:
    """Write a labelled distance matrix as CSV (NaN for missing values)."""
    with open(output_path, 'w', newline='') as f:
        writer = csv.writer(f)
        writer.writerow([""] + list(distance_matrix.col_labels))
        for label, row in zip(distance_matrix.row_labels, distance_matrix.values):
            writer.writerow([label] + [f"{value:.6f}" if np.isfinite(value) else "NaN" for value in row])
    rows, cols = distance_matrix.values.shape
    logging.debug(f"Wrote {rows} x {cols} distance matrix to {output_path}")


def save_tree(tree, output_path: str) -> None:
    """Write a cluster tree in Newick format."""
    with open(output_path, 'w') as f:
        f.write(tree.to_newick())
        f.write("\n")
    logging.debug(f"Wrote tree with {tree.n_leaves} leaves to {output_path}")


def format_otu_output(assignment) -> str:
    """
    Format an OTU assignment as readable text.

    Args:
        assignment: OTUAssignment to format

    Returns:
        Formatted string listing each OTU with its representative marked
    """
    output_lines = []
    for otu_id, members in assignment.otus().items():
        output_lines.append(f"OTU {otu_id} ({len(members)} sequences):")
        for idx in members:
            marker = " *" if assignment.is_representative[idx] else ""
            output_lines.append(f"  - {assignment.labels[idx]}{marker}")
    return "\n".join(output_lines)


def save_otus(assignment,
              output_path: str,
              sequences: Optional[List[str]] = None,
              format: str = "tsv") -> None:
    """
    Save an OTU assignment.

    Args:
        assignment: OTUAssignment to save
        output_path: Output file path
        sequences: Sequences (required for FASTA format)
        format: "tsv" (sequence_id, otu_id, representative), "fasta"
            (one record per representative) or "text"
    """
    if format == "fasta":
        if sequences is None:
            raise ValueError("Sequences are required for FASTA format output")

        records = []
        for otu_id in sorted(assignment.otus()):
            idx = assignment.representative(otu_id)
            size = len(assignment.members(otu_id))
            records.append(SeqRecord(
                Seq(sequences[idx]),
                id=assignment.labels[idx],
                description=f"otu_{otu_id} size={size}"
            ))

        with open(output_path, 'w') as f:
            SeqIO.write(records, f, "fasta-2line")
        logging.debug(f"Wrote {len(records)} representative sequences to {output_path}")

    elif format == "tsv":
        with open(output_path, 'w') as f:
            f.write("sequence_id\totu_id\trepresentative\n")
            for seq_id, otu_id, is_rep in assignment.to_records():
                f.write(f"{seq_id}\t{otu_id}\t{int(is_rep)}\n")

    elif format == "text":
        with open(output_path, 'w') as f:
            f.write(format_otu_output(assignment))

    else:
        raise ValueError(f"Unknown output format: {format}")


def convert_to_json_serializable(obj):
    """Convert numpy containers and scalars to plain Python types for JSON export."""
    if isinstance(obj, np.ndarray):
        return obj.tolist()
    elif isinstance(obj, np.bool_):
        return bool(obj)
    elif isinstance(obj, np.integer):
        return int(obj)
    elif isinstance(obj, np.floating):
        return float(obj)
    elif isinstance(obj, dict):
        return {k: convert_to_json_serializable(v) for k, v in obj.items()}
    elif isinstance(obj, (list, tuple)):
        return [convert_to_json_serializable(item) for item in obj]
    elif isinstance(obj, Path):
        return str(obj)
    return obj
