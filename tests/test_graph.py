import numpy as np
import pytest

pytest.importorskip("gtsam")

from scanner_frontend.config import ScannerConfig
from scanner_frontend.engine import RegistrationEngine
from scanner_graph.graph import PoseGraphBackend
from scanner_graph.robust import make_spd

from conftest import ScriptedOracle, converged, make_scan, not_converged, translation


def _run(oracle, n_scans, config=None, backend=None):
    backend = backend or PoseGraphBackend()
    engine = RegistrationEngine(backend, oracle, config or ScannerConfig())
    records = []
    for i in range(n_scans):
        rec = engine.process_scan(make_scan(stamp=float(i)))
        records.append(rec)
        backend.apply(rec)
    return backend, records


def test_first_frame_gets_prior_and_id_zero():
    backend, _ = _run(ScriptedOracle(), 1)
    kf = backend.last_keyframe()
    assert kf.id == 0
    assert (kf.optimized_pose.x, kf.optimized_pose.y) == pytest.approx((0.0, 0.0), abs=1e-6)
    assert backend.counts["prior"] == 1


def test_keyframe_chain_and_unavailable_delta():
    oracle = ScriptedOracle([converged(0.1, translation(2.0)), converged(0.1, translation(0.1)),
                             not_converged()])
    backend, records = _run(oracle, 4)
    assert [r.keyframe_flag for r in records] == [False, True, False, True]
    assert [kf.id for kf in backend.keyframes()] == [0, 1, 2]
    poses = backend.poses()
    assert poses[1].x == pytest.approx(2.0, abs=1e-6)
    # identity factor for the non-converged keyframe
    assert poses[2].x == pytest.approx(2.0, abs=1e-3)
    assert backend.counts["between"] == 2
    assert backend.counts["unavailable_delta"] == 1
    assert backend.isam.updates == 3


def test_non_keyframe_record_adds_nothing():
    oracle = ScriptedOracle([converged(0.1, translation(0.2))])
    backend, records = _run(oracle, 2)
    assert records[1].keyframe_flag is False
    assert len(backend.keyframes()) == 1


def test_loop_closure_edge_uses_optimized_prior():
    oracle = ScriptedOracle([
        converged(0.1, translation(2.0)),
        converged(0.1, translation(0.0, 2.0)),
        converged(0.1, translation(-2.0)),
        converged(0.2, translation(-2.0, -2.0)),
    ])
    backend, records = _run(oracle, 4, config=ScannerConfig(loop_closure_skip=1),
                            backend=PoseGraphBackend(robust_kind="huber"))
    assert [r.loop_closure_flag for r in records] == [False, False, False, True]
    assert records[3].factor_loop.id_1 == 2 and records[3].factor_loop.id_2 == 0
    loop_call = oracle.calls[-1]
    assert loop_call["tolerance"] == pytest.approx(1.0)
    assert loop_call["initial_guess"][:2, 3] == pytest.approx([-2.0, -2.0], abs=1e-4)
    assert backend.loop_edges == [(2, 0)]
    assert backend.counts["loop"] == 1
    assert backend.poses()[3].y == pytest.approx(2.0, abs=1e-3)
    assert backend.error() == pytest.approx(0.0, abs=1e-6)


def test_unknown_last_keyframe_raises():
    oracle = ScriptedOracle([converged(0.1, translation(2.0))])
    backend, records = _run(oracle, 2)
    records[1].factor_new.id_1 = 42
    with pytest.raises(ValueError):
        backend.apply(records[1])


def test_make_spd_jitters_singular_covariance():
    cov = make_spd(np.zeros((3, 3)))
    np.linalg.cholesky(cov)
    with pytest.raises(ValueError):
        make_spd(np.zeros((3, 2)))
