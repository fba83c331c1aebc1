import numpy as np
import pytest

from conftest import make_dynamics
from pggsim import ensemble
from pggsim.ensemble import EnsembleOrchestrator, SweepPoint, enhancement_factor_sweep
from pggsim.monte_carlo import StrategyRatios, TrialOutcome, simulate_repetition
from pggsim.results import MemoryResultSink


def sweep_dynamics(**overrides):
    values = dict(
        enhancement_range=True,
        enhancement_factor=1.0,
        max_enhancement_factor=2.0,
        enhancement_factor_tick=0.5,
        minor_enhancement_factor_tick_interval=(1.4, 1.6),
        minor_enhancement_factor_tick=0.1,
    )
    values.update(overrides)
    return make_dynamics(**values)


#######################################################################
# Sweep sequence
#######################################################################
def test_fine_tick_inside_interval():
    assert enhancement_factor_sweep(sweep_dynamics()) == [1.0, 1.5, 1.6, 1.7]


def test_sweep_includes_max_despite_float_error():
    dynamics = sweep_dynamics(enhancement_factor=0.0, max_enhancement_factor=1.0, enhancement_factor_tick=0.1,
                              minor_enhancement_factor_tick_interval=(5.0, 6.0))
    values = enhancement_factor_sweep(dynamics)
    assert len(values) == 11
    assert values[3] == 0.3
    assert values[-1] == 1.0


def test_fixed_enhancement_factor_without_range():
    assert enhancement_factor_sweep(make_dynamics(enhancement_factor=3.8)) == [3.8]


#######################################################################
# Sweep point
#######################################################################
def test_mean_excludes_non_converged_repetitions():
    point = SweepPoint(0, 3.0, 3)
    point.add_outcome(2, TrialOutcome.did_not_converge(100))
    point.add_outcome(1, TrialOutcome(7, StrategyRatios(0.4, 0.6)))
    point.add_outcome(0, TrialOutcome(5, StrategyRatios(0.2, 0.8)))
    assert point.complete
    point.wait()
    assert point.finalize() == pytest.approx((0.3, 0.7, 0.0))
    assert point.not_converged_count == 1
    assert point.outcomes[0].steps == 5


def test_no_mean_when_nothing_converged():
    point = SweepPoint(0, 3.0, 2)
    point.add_outcome(0, TrialOutcome.did_not_converge(10))
    point.add_outcome(1, TrialOutcome.did_not_converge(10))
    assert point.finalize() is None


def test_outcome_reported_twice_is_rejected():
    point = SweepPoint(0, 3.0, 2)
    point.add_outcome(0, TrialOutcome.did_not_converge(10))
    with pytest.raises(ValueError):
        point.add_outcome(0, TrialOutcome.did_not_converge(10))


def test_stream_runs_under_the_point_lock():
    point = SweepPoint(4, 3.0, 1)
    held = []
    point.add_outcome(0, TrialOutcome.did_not_converge(10),
                      stream=lambda p, repetition, outcome: held.append(p.lock.locked()))
    assert held == [True]


def test_worker_error_surfaces_at_the_barrier():
    point = SweepPoint(0, 3.0, 2)
    point.fail(RuntimeError("worker died"))
    with pytest.raises(RuntimeError, match="worker died"):
        point.wait()


#######################################################################
# Orchestrator
#######################################################################
def run_sweep(world, parallel, seed=7):
    topology, groups = world
    dynamics = sweep_dynamics(enhancement_factor=2.0, max_enhancement_factor=5.0, enhancement_factor_tick=1.5,
                              max_mcs=30, repetitions_count=3)
    sink = MemoryResultSink()
    orchestrator = EnsembleOrchestrator(topology, groups, dynamics, sink,
                                        seed_sequence=np.random.SeedSequence(seed),
                                        parallel=parallel, max_workers=2)
    return orchestrator.run(), sink


def test_thread_sweep_publishes_every_point_in_order(lattice_world):
    points, sink = run_sweep(lattice_world, "thread")
    assert [point.enhancement_factor for point in points] == [2.0, 3.5, 5.0]
    assert [point.index for point in sink.points] == [0, 1, 2]
    for point in points:
        assert point.complete
        assert all(outcome is not None for outcome in point.outcomes)
        assert sorted(repetition for repetition, _ in sink.repetitions[point.index]) == [0, 1, 2]


def test_sweep_is_reproducible(lattice_world):
    first, _ = run_sweep(lattice_world, "thread")
    second, _ = run_sweep(lattice_world, "thread")
    assert [p.outcomes for p in first] == [p.outcomes for p in second]
    assert [p.means for p in first] == [p.means for p in second]


def test_process_pool_matches_thread_pool(lattice_world):
    threaded, _ = run_sweep(lattice_world, "thread", seed=3)
    processed, _ = run_sweep(lattice_world, "process", seed=3)
    assert [p.outcomes for p in threaded] == [p.outcomes for p in processed]


def test_unknown_executor_is_rejected(lattice_world):
    topology, groups = lattice_world
    with pytest.raises(ValueError):
        EnsembleOrchestrator(topology, groups, sweep_dynamics(), MemoryResultSink(), parallel="gpu")


def test_worker_runs_on_the_world_set_by_the_initializer(lattice_world, monkeypatch):
    topology, groups = lattice_world
    dynamics = make_dynamics(max_mcs=20)
    monkeypatch.setattr(ensemble, "_worker_world", None)
    ensemble._init_worker(topology, groups, dynamics)
    outcome = ensemble._simulate_in_worker(3.0, np.random.SeedSequence(12), 0)
    assert outcome == simulate_repetition(topology, groups, dynamics, 3.0, np.random.SeedSequence(12))
