import argparse
import os
import sys
import logging

from quatfold.config import PipelineConfig, parse_methods
from quatfold.errors import InputError, ReferenceFetchError
from quatfold.input_handler import load_fasta
from quatfold.pdb_io import parse_pdb, write_pdb
from quatfold.pipeline import run_pipeline
from quatfold.reference import fetch_reference
from quatfold.report import result_to_dict, write_results_json

logger = logging.getLogger("quatfold")


def print_progress(msg):
    print(msg)
    sys.stdout.flush()


def build_config(args):
    overrides = {}
    if args.methods:
        names = parse_methods(args.methods)
        for m in ("sphere", "monte_carlo", "fragments", "basins"):
            overrides[f"use_{m}"] = m in names
    if args.optimizers:
        overrides["optimizer_methods"] = parse_methods(args.optimizers)
    if args.samples is not None:
        overrides["samples_per_method"] = args.samples
    if args.workers is not None:
        overrides["max_workers"] = args.workers
    if args.seed is not None:
        overrides["seed"] = args.seed
    if args.bias:
        overrides["bias_enabled"] = True
    if args.superpose:
        overrides["superpose"] = True
    if args.no_hydrogens:
        overrides["add_hydrogens"] = False
    if args.diverse is not None:
        overrides["diverse_count"] = args.diverse
    cfg = PipelineConfig.from_env(args.env_file, **overrides)
    if args.bias_weight is not None:
        cfg.scoring.bias_weight = args.bias_weight
    if args.adaptive_mc:
        cfg.monte_carlo.adaptive = True
    if args.basin_mode:
        cfg.basins.mode = args.basin_mode
    return cfg


def load_reference(args):
    if args.reference_pdb:
        return parse_pdb(args.reference_pdb)
    if args.reference_id:
        return fetch_reference(args.reference_id, cache_dir=os.path.join(args.outdir, "references"))
    return None


def main(argv=None):
    parser = argparse.ArgumentParser(description="QuatFold: quaternion-sampled protein backbone prediction")
    parser.add_argument("input", help="Path to input FASTA file, or a raw sequence with --sequence")
    parser.add_argument("--sequence", action="store_true", help="Treat input as a literal sequence")
    parser.add_argument("--outdir", default="output", help="Output directory")
    parser.add_argument("--methods", default=None, help="Sampling strategies, e.g. sphere,monte_carlo,fragments,basins")
    parser.add_argument("--optimizers", default=None, help="Optimizer cascade, e.g. gentle,lbfgs,annealing,constraints")
    parser.add_argument("--samples", type=int, default=None, help="Candidates per sampling strategy")
    parser.add_argument("--workers", type=int, default=None, help="Worker threads")
    parser.add_argument("--seed", type=int, default=None, help="Random seed")
    parser.add_argument("--bias", action="store_true", help="Enable the harmonic bias scorer")
    parser.add_argument("--bias-weight", type=float, default=None, help="Weight of the bias in ranking")
    parser.add_argument("--superpose", action="store_true", help="Kabsch-superpose before RMSD/TM/GDT")
    parser.add_argument("--no-hydrogens", action="store_true", help="Do not place backbone amide hydrogens")
    parser.add_argument("--adaptive-mc", action="store_true", help="Acceptance-driven Monte Carlo temperature with early stop")
    parser.add_argument("--basin-mode", choices=("systematic", "mixed", "constrained"), default=None,
                        help="Basin explorer mode; constrained follows predicted secondary structure")
    parser.add_argument("--diverse", type=int, default=None, help="Number of diverse models to write")
    parser.add_argument("--reference-pdb", default=None, help="Reference structure file for comparison")
    parser.add_argument("--reference-id", default=None, help="PDB identifier to download as reference")
    parser.add_argument("--env-file", default=None, help="Path to a .env file")
    parser.add_argument("--verbose", action="store_true", help="Debug logging")

    args = parser.parse_args(argv)
    logging.basicConfig(level=logging.DEBUG if args.verbose else logging.INFO,
                        format="%(message)s", stream=sys.stdout)

    if args.sequence:
        sequences = [("query", args.input)]
    else:
        try:
            sequences = load_fasta(args.input)
        except InputError as e:
            print(f"Error loading FASTA: {e}")
            return 1
    if not sequences:
        print("No sequences found.")
        return 1

    cfg = build_config(args)
    try:
        reference = load_reference(args)
    except (InputError, ReferenceFetchError) as e:
        print(f"Reference unavailable, continuing without comparison: {e}")
        reference = None

    os.makedirs(args.outdir, exist_ok=True)
    status = 0
    for seq_id, seq in sequences:
        safe_id = "".join(c if c.isalnum() or c in "-_." else "_" for c in seq_id)
        print_progress(f"=== {seq_id} ({len(seq)} aa) ===")
        result = run_pipeline(seq, cfg, reference=reference, log_callback=print_progress)
        if result.errors:
            for err in result.errors:
                print(f"  error: {err}")
        best = result.best
        if best is None:
            status = 1
        else:
            pdb_path = os.path.join(args.outdir, f"{safe_id}_best.pdb")
            remarks = [f"QUATFOLD {best.method} candidate {best.index}",
                       f"ENERGY {best.energy:.3f}"]
            write_pdb(best.candidate.structure, pdb_path, remarks)
            print(f"Best model written to {pdb_path}")
            for rank, o in enumerate(result.diverse[1:], start=2):
                path = os.path.join(args.outdir, f"{safe_id}_diverse_{rank}.pdb")
                write_pdb(o.candidate.structure, path, [f"QUATFOLD {o.method} candidate {o.index}",
                                                        f"ENERGY {o.energy:.3f}"])
            if len(result.diverse) > 1:
                print(f"{len(result.diverse) - 1} diverse alternatives written to {args.outdir}")
        json_path = os.path.join(args.outdir, f"{safe_id}_results.json")
        if write_results_json(json_path, result_to_dict(result)):
            print(f"Results written to {json_path}")
    return status


if __name__ == "__main__":
    sys.exit(main())
