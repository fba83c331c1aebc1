"""
Networked Public Goods Game simulation

Loads a JSON configuration, builds the population network, and either runs a
single simulation that records the strategy ratios of every Monte Carlo
step, or sweeps the enhancement factor and averages many independent
repetitions per value in parallel.
"""
import argparse
import dataclasses
import functools
import json
import logging
import os
import platform
import sys
import time
import traceback
from datetime import datetime

import numpy as np

from .config import ConfigError, load_config
from .ensemble import EnsembleOrchestrator
from .groups import GroupStructure
from .monte_carlo import MonteCarloEngine
from .network import NetworkFileError, RewiringError, build_topology
from .results import CsvResultSink


#######################################################################
# Setup logging
#######################################################################
def init_log(results_path, log_level="INFO"):
    """Initialize logging with specified log level"""
    level = getattr(logging, log_level.upper(), logging.INFO)

    logging.basicConfig(level=level, format='%(asctime)s - %(name)s - %(levelname)s - %(lineno)d - %(message)s')

    os.makedirs(results_path, exist_ok=True)
    path = os.path.join(results_path, 'pggsim.log')
    fh = logging.FileHandler(path, mode='w', encoding='utf-8')
    fh.setLevel(level)
    fh.setFormatter(logging.Formatter('%(asctime)s - %(name)s - %(levelname)s - %(lineno)d - %(message)s'))
    logging.getLogger().addHandler(fh)

    logging.info("Logging initialized successfully.")
    logging.info(f"Results will be saved to: {results_path}")

    return logging.getLogger()


#######################################################################
# Time tracking decorator
#######################################################################
def _timing_wrapper(func, *args, **kwargs):
    """Helper function for the timing decorator"""
    start_time = time.time()
    result = func(*args, **kwargs)
    elapsed_time = time.time() - start_time
    return result, elapsed_time


def timing_decorator(func):
    """Decorator returning (result, elapsed seconds)"""
    @functools.wraps(func)
    def wrapper(*args, **kwargs):
        return _timing_wrapper(func, *args, **kwargs)
    return wrapper


#######################################################################
# Run modes
#######################################################################
def run_single(topology, groups, config, sink, seed_sequence):
    """
    Run one simulation and stream every step's ratios to the sink.

    Returns:
    --------
    SingleRunResult : Trajectory, last step and whether it converged
    """
    dynamics = config.dynamics
    rng = np.random.default_rng(seed_sequence)
    engine = MonteCarloEngine(topology, groups, dynamics, dynamics.enhancement_factor, rng)
    return engine.run_single(on_step=sink.record_step)


@timing_decorator
def run_simulation(topology, groups, config, sink, seed_sequence, parallel='process', workers=None):
    """
    Run the mode the configuration asks for.

    Parameters:
    -----------
    topology : Topology
        Frozen population network
    groups : GroupStructure
        Groups of the network
    config : SimulationConfig
        Whole configuration
    sink : ResultSink
        Receives all results
    seed_sequence : numpy.random.SeedSequence
        Root of every random stream of the dynamics
    parallel : str
        Executor type for the ensemble ('thread' or 'process')
    workers : int, optional
        Worker pool size

    Returns:
    --------
    tuple : (SingleRunResult or list of SweepPoint, elapsed seconds)
    """
    sink.begin(config, topology)
    if config.dynamics.enhancement_range:
        orchestrator = EnsembleOrchestrator(topology, groups, config.dynamics, sink,
                                            seed_sequence=seed_sequence, parallel=parallel,
                                            max_workers=workers)
        return orchestrator.run()
    return run_single(topology, groups, config, sink, seed_sequence)


#######################################################################
# Command line
#######################################################################
def parse_args(argv=None):
    """
    Parse command-line arguments.

    Returns:
    --------
    argparse.Namespace : Parsed command-line arguments
    """
    parser = argparse.ArgumentParser(description="Networked Public Goods Game Simulator")
    parser.add_argument("--config", type=str, required=True, help="JSON configuration file")
    parser.add_argument("--results_dir", type=str, default="results", help="Directory to save results and logs")
    parser.add_argument("--parallel", choices=['thread', 'process'], default='process', help="Parallelization method")
    parser.add_argument("--workers", type=int, default=None, help="Number of workers (default: CPU count)")
    parser.add_argument("--log_level", choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"], default="INFO", help="Log level")
    parser.add_argument("--seed", type=int, default=None, help="Random seed, overrides the configuration seed")
    return parser.parse_args(argv)


def main(argv=None):
    """
    Main function to run the Public Goods Game simulation.

    Returns:
    --------
    int : Exit code (0 success, 1 run failure, 2 invalid configuration)
    """
    args = parse_args(argv)

    try:
        config = load_config(args.config)
    except ConfigError as e:
        print(f"Invalid configuration: {e}", file=sys.stderr)
        return 2
    if args.seed is not None:
        config = dataclasses.replace(config, seed=args.seed)

    timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
    results_dir = os.path.join(args.results_dir, f"pgg_{timestamp}")
    os.makedirs(results_dir, exist_ok=True)

    logger = init_log(results_dir, args.log_level)

    sink = CsvResultSink(results_dir)
    result = None
    elapsed = 0.0
    exit_code = 0
    try:
        logger.info("="*80)
        logger.info("Starting Public Goods Game simulation")
        logger.info("="*80)
        logger.info(f"Network: {config.network.describe()}")
        logger.info(f"Running mode: {'enhancement factor sweep' if config.dynamics.enhancement_range else 'single run'}")
        logger.info(f"Python version: {platform.python_version()}")
        logger.info(f"Operating system: {platform.platform()}")

        root_seed = np.random.SeedSequence(config.seed)
        logger.info(f"Seed entropy: {root_seed.entropy}")
        network_seed, dynamics_seed = root_seed.spawn(2)

        # Save configuration for reproducibility
        saved = config.to_dict()
        saved["seed"] = root_seed.entropy
        with open(os.path.join(results_dir, "config.json"), 'w') as f:
            json.dump(saved, f, indent=2)

        topology = build_topology(config.network, np.random.default_rng(network_seed),
                                  save_path=os.path.join(results_dir, "network.csv"))
        groups = GroupStructure.from_topology(topology)

        result, elapsed = run_simulation(topology, groups, config, sink, dynamics_seed,
                                         parallel=args.parallel, workers=args.workers)
        logger.info(f"Simulation completed in {elapsed:.2f} seconds")

    except (RewiringError, NetworkFileError) as e:
        logger.error(f"Network construction failed: {e}")
        exit_code = 1

    except Exception as e:
        logger.error(f"An error occurred in the main function: {e}")
        logger.error(traceback.format_exc())
        exit_code = 1

    finally:
        sink.close()
        logger.info("="*80)
        logger.info("Public Goods Game simulation finished")
        logger.info("="*80)

        print("\nPublic Goods Game Simulation Summary:")
        print("="*50)
        if result is None:
            print("Simulation did not complete")
        elif config.dynamics.enhancement_range:
            print(f"Enhancement factor sweep completed with {len(result)} values")
            for point in result:
                if point.means is None:
                    print(f"r = {point.enhancement_factor}: no repetition converged")
                else:
                    print(f"r = {point.enhancement_factor}: cooperators = {point.means.cooperators:.4f}")
        else:
            print(f"Single run {'converged' if result.converged else 'stopped'} after {result.steps} MCS")
            print(f"Cooperation rate: {result.trajectory[-1].cooperators:.4f}")
        print(f"Runtime: {elapsed:.2f} seconds")
        print(f"Results saved to: {results_dir}")
        print("="*50)

    return exit_code


if __name__ == "__main__":
    sys.exit(main())
