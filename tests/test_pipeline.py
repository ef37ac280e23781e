import logging
import threading
import time

import numpy as np
import pytest

from fakes import ThreadedViewer
from live_mesh.camera_drivers import PlaybackGrabber
from live_mesh.errors import DeviceNotFoundError, PipelineStateError
from live_mesh.pipeline import FastMeshPipeline, PipelineState


def wait_for(predicate, timeout=5.0):
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(0.001)
    return False


@pytest.fixture
def pipeline(grabber, viewer):
    p = FastMeshPipeline(grabber, viewer, max_edge_length=0.05)
    yield p
    p.stop()


def test_start_wires_handlers_and_starts_collaborators(pipeline, grabber, viewer):
    assert pipeline.state is PipelineState.CREATED
    pipeline.start()

    assert pipeline.state is PipelineState.RUNNING
    assert grabber.running
    assert viewer.started
    assert viewer.callbacks == {"viz_cb": pipeline.render}

    with pytest.raises(PipelineStateError):
        pipeline.start()


def test_consumer_faster_than_producer_sees_every_mesh(pipeline, grabber, viewer, make_cloud):
    pipeline.start()

    # Deliveries at t=0, 1, 2 ms, polls at t=0.5, 1.5, 2.5 ms
    for i in range(3):
        grabber.deliver(make_cloud(sequence=i, stamp=i * 0.001))
        viewer.tick()

    assert [mesh.source_sequence for _, mesh in viewer.meshes] == [0, 1, 2]
    assert pipeline.acquisition.stats.skipped == 0


def test_delayed_consumer_only_sees_newest_publish(pipeline, viewer, make_cloud):
    pipeline.start()
    slot = pipeline.slot

    older, newer = make_cloud(sequence=0), make_cloud(sequence=1)
    slot.publish(pipeline.acquisition.reconstruct_fn(older, 0.05, 1, 'adaptive'), older)
    slot.publish(pipeline.acquisition.reconstruct_fn(newer, 0.05, 1, 'adaptive'), newer)
    viewer.tick()
    viewer.tick()

    assert [mesh.source_sequence for _, mesh in viewer.meshes] == [1]


def test_delayed_consumer_keeps_last_mesh_with_latest_cloud(grabber, viewer, make_cloud):
    pipeline = FastMeshPipeline(grabber, viewer, max_edge_length=0.05, show_cloud=True)
    pipeline.start()

    grabber.deliver(make_cloud(sequence=0))
    grabber.deliver(make_cloud(sequence=1))
    viewer.tick()

    (_, mesh), = viewer.meshes
    (_, cloud), = viewer.clouds
    assert mesh.source_sequence == 0
    assert cloud.sequence == 1
    assert pipeline.acquisition.stats.skipped == 1
    pipeline.stop()


def test_stop_sequence_and_teardown(pipeline, grabber, viewer, make_cloud):
    pipeline.start()
    grabber.deliver(make_cloud(sequence=0))
    pipeline.stop()

    assert pipeline.state is PipelineState.STOPPED
    assert not grabber.running
    assert viewer.closed
    assert viewer.callbacks == {}
    assert pipeline.slot.try_take() is None

    grabber.deliver(make_cloud(sequence=1))
    assert pipeline.acquisition.stats.frames_received == 1

    pipeline.stop()  # idempotent
    assert pipeline.state is PipelineState.STOPPED


def test_stop_logs_stats_summary(pipeline, grabber, viewer, make_cloud, caplog):
    pipeline.start()
    grabber.deliver(make_cloud(sequence=0))
    viewer.tick()

    with caplog.at_level(logging.DEBUG, logger="live_mesh"):
        pipeline.stop()

    assert "frames: 1, meshes: 1, skipped: 0, failed: 0, rendered: 1" in caplog.text
    assert "Pipeline stats:" in caplog.text
    assert "'state': 'stopped'" in caplog.text


def test_bad_representation_fails_at_construction(grabber, viewer):
    with pytest.raises(ValueError):
        FastMeshPipeline(grabber, viewer, representation='points')
    assert not grabber.running
    assert viewer.callbacks == {}


def test_stop_before_start(grabber, viewer):
    pipeline = FastMeshPipeline(grabber, viewer)
    pipeline.stop()
    assert pipeline.state is PipelineState.STOPPED
    assert not viewer.closed
    with pytest.raises(PipelineStateError):
        pipeline.start()


def test_failed_grabber_start_releases_viewer(grabber, viewer):
    grabber.start_error = DeviceNotFoundError("No devices connected.")
    pipeline = FastMeshPipeline(grabber, viewer)

    with pytest.raises(DeviceNotFoundError):
        pipeline.start()
    assert pipeline.state is PipelineState.STOPPED
    assert viewer.closed
    assert viewer.callbacks == {}


def test_run_returns_when_viewer_stops(pipeline, viewer):
    timer = threading.Timer(0.05, viewer.mark_stopped)
    timer.start()
    pipeline.run()
    timer.join()
    assert pipeline.state is PipelineState.STOPPED


def test_run_returns_on_stop_request(pipeline):
    timer = threading.Timer(0.05, pipeline.request_stop)
    timer.start()
    pipeline.run()
    timer.join()
    assert pipeline.state is PipelineState.STOPPED


def test_context_manager_stops(grabber, viewer):
    with FastMeshPipeline(grabber, viewer) as pipeline:
        pipeline.start()
    assert pipeline.state is PipelineState.STOPPED
    assert not grabber.running


def playback_frames(count=5):
    frames = []
    for i in range(count):
        v, u = np.mgrid[0:6, 0:8]
        frames.append(np.stack([u * 0.01, v * 0.01, np.full((6, 8), 1.0 + 0.01 * i)], axis=-1))
    return frames


def test_threaded_pipeline_publish_counter_frozen_after_stop():
    grabber = PlaybackGrabber(playback_frames(), fps=0, loop=True)
    viewer = ThreadedViewer()
    pipeline = FastMeshPipeline(grabber, viewer, max_edge_length=0.05)
    pipeline.start()

    assert wait_for(lambda: len(viewer.meshes) >= 5)
    grabber.stop()

    received = pipeline.acquisition.stats.frames_received
    published = pipeline.slot.publish_count
    time.sleep(0.05)
    assert pipeline.acquisition.stats.frames_received == received
    assert pipeline.slot.publish_count == published

    pipeline.stop()
    stats = pipeline.stats()
    assert stats['state'] == 'stopped'
    assert stats['acquisition']['frames_received'] == received
    assert stats['slot']['published'] == published


def test_threaded_run_until_viewer_closes():
    grabber = PlaybackGrabber(playback_frames(), fps=0, loop=True)
    viewer = ThreadedViewer(close_after=10)
    pipeline = FastMeshPipeline(grabber, viewer, max_edge_length=0.05)

    pipeline.run()

    assert pipeline.state is PipelineState.STOPPED
    assert not grabber.is_running()
    sequences = [mesh.source_sequence for _, mesh in viewer.meshes]
    assert len(sequences) >= 10
    assert sequences == sorted(sequences)
    assert len(set(sequences)) == len(sequences)
