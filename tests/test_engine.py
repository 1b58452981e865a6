import dataclasses

import numpy as np
import pytest

from scanner_frontend.config import ConfigError, ScannerConfig
from scanner_frontend.engine import RegistrationEngine, vote_for_keyframe
from scanner_frontend.geometry import invert_transform, pose2_to_matrix
from scanner_frontend.models import Keyframe, Pose2D, Scan
from scanner_common.kpi_logging import KPILogger
from scanner_common.latency import AlignmentTimer

from conftest import (FakeStore, ScriptedOracle, converged, make_scan, not_converged,
                      room_cloud, translation)


def _engine(store, oracle, **cfg):
    return RegistrationEngine(store, oracle, ScannerConfig(**cfg))


# --- keyframe vote -----------------------------------------------------------

def test_vote_fires_on_high_fitness_regardless_of_motion(config):
    assert vote_for_keyframe(Pose2D(0.0, 0.0, 0.0), 2.0, config)


def test_small_translation_alone_does_not_vote(config):
    assert not vote_for_keyframe(Pose2D(0.05, 0.0, 0.0), 0.1, config)


def test_vote_on_rotation_and_distance(config):
    assert vote_for_keyframe(Pose2D(0.0, 0.0, -1.2), 0.1, config)
    assert vote_for_keyframe(Pose2D(0.8, 0.7, 0.0), 0.1, config)  # 0.64 + 0.49 > 1
    assert not vote_for_keyframe(Pose2D(0.7, 0.7, 0.9), 1.5, config)


def test_missing_delta_forces_vote(config):
    assert vote_for_keyframe(None, 0.0, config)


# --- first frame -------------------------------------------------------------

def test_first_scan_on_empty_store_is_first_frame(scan):
    oracle = ScriptedOracle()
    rec = _engine(FakeStore(), oracle).process_scan(scan)
    assert rec.first_frame_flag is True
    assert rec.keyframe_flag is False
    assert rec.loop_closure_flag is False
    assert rec.keyframe_new.scan is scan
    assert rec.keyframe_new.point_cloud.shape[1] == 3
    assert rec.keyframe_last is None and rec.factor_new is None
    assert oracle.calls == []


# --- primary alignment -------------------------------------------------------

def test_non_keyframe_carries_transform(last_keyframe, scan):
    T = translation(0.05, 0.0, 0.01)
    oracle = ScriptedOracle([converged(0.1, T)])
    engine = _engine(FakeStore(last=last_keyframe), oracle)
    rec = engine.process_scan(scan)
    assert rec.keyframe_flag is False
    assert rec.first_frame_flag is False
    assert rec.keyframe_last is last_keyframe
    assert rec.factor_new is None
    assert np.allclose(engine.carried_transform, T)
    assert engine.loop_attempt_counter == 0
    call = oracle.calls[0]
    assert np.allclose(call["initial_guess"], np.eye(4))
    assert call["tolerance"] == pytest.approx(0.05)
    assert call["target"] is last_keyframe.point_cloud


def test_carried_transform_seeds_next_alignment(last_keyframe, scan):
    T = translation(0.1, 0.02, 0.05)
    oracle = ScriptedOracle([converged(0.1, T), converged(0.1, T)])
    engine = _engine(FakeStore(last=last_keyframe), oracle)
    engine.process_scan(scan)
    engine.process_scan(make_scan(stamp=3.0))
    assert np.allclose(oracle.calls[1]["initial_guess"], T)


def test_high_fitness_creates_keyframe_and_resets_carry(last_keyframe, scan):
    T = translation(0.05, 0.0)
    oracle = ScriptedOracle([converged(0.1, T), converged(2.0, T)])
    engine = _engine(FakeStore(last=last_keyframe), oracle, loop_closure_skip=10)
    engine.process_scan(scan)
    assert not np.allclose(engine.carried_transform, np.eye(4))
    rec = engine.process_scan(make_scan(stamp=3.0))
    assert rec.keyframe_flag is True
    assert np.allclose(engine.carried_transform, np.eye(4))
    assert engine.loop_attempt_counter == 1
    f = rec.factor_new
    assert f.id_1 == last_keyframe.id and f.id_2 is None
    assert f.delta.pose.x == pytest.approx(0.05)
    assert f.delta.covariance.shape == (3, 3)
    assert rec.alignment_last.fitness == pytest.approx(2.0)


def test_non_convergence_forces_keyframe_without_delta(last_keyframe, scan):
    oracle = ScriptedOracle([not_converged()])
    engine = _engine(FakeStore(last=last_keyframe), oracle, loop_closure_skip=10)
    rec = engine.process_scan(scan)
    assert rec.keyframe_flag is True
    assert rec.factor_new is not None
    assert rec.factor_new.delta is None
    assert rec.alignment_last.converged is False
    assert rec.alignment_last.convergence_state == "no_correspondences"
    assert engine.counts["non_converged"] == 1


# --- loop closure pacing -----------------------------------------------------

def test_loop_attempt_after_skip_keyframes(last_keyframe):
    closest = Keyframe(id=2, stamp=0.5, point_cloud=room_cloud(), optimized_pose=Pose2D(0.5, 0.0, 0.0))
    store = FakeStore(last=last_keyframe, closest=closest)
    oracle = ScriptedOracle([converged(3.0)] * 3)
    engine = _engine(store, oracle, loop_closure_skip=3)
    for i in range(2):
        engine.process_scan(make_scan(stamp=float(i)))
    assert store.closest_queries == []
    oracle.push(converged(9.0))  # loop alignment, rejected on fitness
    engine.process_scan(make_scan(stamp=5.0))
    assert store.closest_queries == [last_keyframe.id]


def test_accepted_loop_closure_resets_counter(last_keyframe, scan):
    closest = Keyframe(id=2, stamp=0.5, point_cloud=room_cloud(), optimized_pose=Pose2D(0.5, -1.0, 0.1))
    store = FakeStore(last=last_keyframe, closest=closest)
    T_loop = translation(-0.4, -3.0, -0.2)
    oracle = ScriptedOracle([converged(2.0), converged(1.0, T_loop)])
    engine = _engine(store, oracle, loop_closure_skip=1)
    rec = engine.process_scan(scan)
    assert rec.keyframe_flag and rec.loop_closure_flag
    assert rec.keyframe_loop is closest
    assert rec.factor_loop.id_1 == last_keyframe.id
    assert rec.factor_loop.id_2 == closest.id
    assert rec.factor_loop.delta.pose.y == pytest.approx(-3.0)
    assert engine.loop_attempt_counter == 0

    loop_call = oracle.calls[1]
    assert loop_call["source"] is closest.point_cloud
    assert loop_call["target"] is last_keyframe.point_cloud
    assert loop_call["tolerance"] == pytest.approx(1.0)
    expected_prior = invert_transform(pose2_to_matrix(last_keyframe.optimized_pose)) @ pose2_to_matrix(closest.optimized_pose)
    assert np.allclose(loop_call["initial_guess"], expected_prior)


def test_rejected_loop_keeps_counter_and_retries(last_keyframe):
    closest = Keyframe(id=2, stamp=0.5, point_cloud=room_cloud())
    store = FakeStore(last=last_keyframe, closest=closest)
    oracle = ScriptedOracle([converged(2.0), not_converged(), converged(2.0), converged(5.0)])
    engine = _engine(store, oracle, loop_closure_skip=1)
    rec1 = engine.process_scan(make_scan(stamp=1.0))
    rec2 = engine.process_scan(make_scan(stamp=2.0))
    assert not rec1.loop_closure_flag and not rec2.loop_closure_flag
    assert rec1.factor_loop is None and rec1.keyframe_loop is None
    assert rec1.alignment_loop is not None
    assert engine.loop_attempt_counter == 2
    assert store.closest_queries == [7, 7]


def test_missing_closest_keyframe_skips_loop_silently(last_keyframe, scan):
    store = FakeStore(last=last_keyframe, closest=None)
    oracle = ScriptedOracle([converged(2.0)])
    engine = _engine(store, oracle, loop_closure_skip=1)
    rec = engine.process_scan(scan)
    assert rec.keyframe_flag and not rec.loop_closure_flag
    assert len(oracle.calls) == 1
    assert engine.loop_attempt_counter == 1


def test_non_keyframe_does_not_touch_counter(last_keyframe, scan):
    oracle = ScriptedOracle([converged(0.1)])
    engine = _engine(FakeStore(last=last_keyframe), oracle, loop_closure_skip=0)
    engine.loop_attempt_counter = 3
    engine.process_scan(scan)
    assert engine.loop_attempt_counter == 3


# --- malformed input ---------------------------------------------------------

def test_empty_scan_is_rejected_and_processing_continues(last_keyframe):
    oracle = ScriptedOracle([converged(0.1)])
    engine = _engine(FakeStore(last=last_keyframe), oracle)
    empty = Scan(stamp=1.0, angle_min=0.0, angle_increment=0.1, range_min=0.1, range_max=5.0, ranges=[])
    assert engine.process_scan(empty) is None
    assert oracle.calls == []
    assert engine.counts["rejected"] == 1
    assert engine.process_scan(make_scan(stamp=2.0)) is not None


@pytest.mark.parametrize("field, value", [
    ("stamp", None),
    ("ranges", [None, 1.0, 2.0]),
    ("angle_increment", None),
    ("range_max", None),
    ("angle_min", "left"),
])
def test_non_numeric_scan_fields_are_rejected(last_keyframe, field, value):
    oracle = ScriptedOracle([converged(0.1)])
    engine = _engine(FakeStore(last=last_keyframe), oracle)
    bad = dataclasses.replace(make_scan(stamp=1.0), **{field: value})
    assert engine.process_scan(bad) is None
    assert oracle.calls == []
    assert engine.counts["rejected"] == 1
    assert engine.process_scan(make_scan(stamp=2.0)) is not None


def test_invalid_config_aborts_at_construction():
    with pytest.raises(ConfigError):
        RegistrationEngine(FakeStore(), ScriptedOracle(), ScannerConfig(distance_threshold=-1.0))


def test_reset_restores_initial_state(last_keyframe, scan):
    oracle = ScriptedOracle([converged(0.1, translation(0.1))])
    engine = _engine(FakeStore(last=last_keyframe), oracle)
    engine.process_scan(scan)
    engine.loop_attempt_counter = 2
    engine.reset()
    assert np.allclose(engine.carried_transform, np.eye(4))
    assert engine.loop_attempt_counter == 0


# --- instrumentation ---------------------------------------------------------

def test_kpi_and_timer_receive_events(tmp_path, last_keyframe):
    closest = Keyframe(id=2, stamp=0.5, point_cloud=room_cloud())
    kpi = KPILogger(log_path=str(tmp_path / "events.jsonl"), emit_to_logger=False)
    timer = AlignmentTimer()
    oracle = ScriptedOracle([converged(2.0), converged(0.5)])
    engine = RegistrationEngine(FakeStore(last=last_keyframe, closest=closest), oracle,
                                ScannerConfig(loop_closure_skip=1), kpi=kpi, timer=timer)
    engine.process_scan(make_scan(stamp=1.0))
    engine.process_scan(Scan(stamp=2.0, angle_min=0.0, angle_increment=0.1,
                             range_min=0.1, range_max=5.0, ranges=[]))
    kpi.close()
    lines = (tmp_path / "events.jsonl").read_text().splitlines()
    assert len(lines) == 4
    assert any('"event": "loop_closure_attempt"' in line for line in lines)
    assert any('"event": "scan_rejected"' in line for line in lines)
    assert [ev["stage"] for ev in timer.events] == ["primary", "loop"]
