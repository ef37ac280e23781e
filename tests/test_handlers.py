import logging

import pytest

from live_mesh.errors import ReconstructionError
from live_mesh.frame import Mesh
from live_mesh.frame_rate import FrameRateMonitor
from live_mesh.frame_slot import SharedFrameSlot
from live_mesh.handlers import AcquisitionHandler, RenderTickHandler
from live_mesh.organized_mesh import TriangulationMode


class RecordingReconstruct:
    def __init__(self, fail_on=()):
        self.calls = []
        self.fail_on = set(fail_on)

    def __call__(self, cloud, max_edge_length, triangle_pixel_size, triangulation_mode):
        self.calls.append((cloud.sequence, max_edge_length, triangle_pixel_size, triangulation_mode))
        if cloud.sequence in self.fail_on:
            raise ReconstructionError("degenerate frame")
        return Mesh(vertices=cloud.points.reshape(-1, 3)[:3],
                    triangles=[[0, 1, 2]], source_sequence=cloud.sequence)


@pytest.fixture
def slot():
    return SharedFrameSlot()


def test_idle_slot_triggers_reconstruction_and_publish(slot, make_cloud):
    recon = RecordingReconstruct()
    handler = AcquisitionHandler(slot, max_edge_length=0.5, triangle_pixel_size=2,
                                 triangulation_mode='right', reconstruct_fn=recon)
    cloud = make_cloud(sequence=0)
    handler(cloud)

    assert recon.calls == [(0, 0.5, 2, TriangulationMode.RIGHT_CUT)]
    contents = slot.try_take()
    assert contents.mesh.source_sequence == 0
    assert contents.frame is cloud
    assert handler.stats.published == 1


def test_dirty_slot_skips_reconstruction_but_refreshes_cloud(slot, make_cloud):
    recon = RecordingReconstruct()
    handler = AcquisitionHandler(slot, reconstruct_fn=recon)

    handler(make_cloud(sequence=0))
    newer = make_cloud(sequence=1)
    handler(newer)

    assert [call[0] for call in recon.calls] == [0]
    assert handler.stats.skipped == 1
    contents = slot.try_take()
    # Last mesh stays until a fresh reconstruction succeeds
    assert contents.mesh.source_sequence == 0
    assert contents.frame is newer


def test_reconstruction_resumes_once_consumer_catches_up(slot, make_cloud):
    recon = RecordingReconstruct()
    handler = AcquisitionHandler(slot, reconstruct_fn=recon)

    handler(make_cloud(sequence=0))
    handler(make_cloud(sequence=1))
    slot.try_take()
    handler(make_cloud(sequence=2))

    assert [call[0] for call in recon.calls] == [0, 2]
    assert slot.try_take().mesh.source_sequence == 2


def test_reconstruction_failure_is_contained(slot, make_cloud, caplog):
    handler = AcquisitionHandler(slot, reconstruct_fn=RecordingReconstruct(fail_on={0}))

    with caplog.at_level(logging.WARNING, logger="live_mesh"):
        handler(make_cloud(sequence=0))

    assert slot.try_take() is None
    assert handler.stats.failures == 1
    assert "Reconstruction failed on frame 0" in caplog.text

    handler(make_cloud(sequence=1))
    assert slot.try_take().mesh.source_sequence == 1


def test_empty_mesh_is_not_published(slot, make_cloud):
    handler = AcquisitionHandler(slot, reconstruct_fn=lambda *args: Mesh())
    handler(make_cloud())
    assert slot.try_take() is None
    assert handler.stats.failures == 1


def test_every_delivered_frame_counts_toward_rate(slot, make_cloud):
    monitor = FrameRateMonitor("computation", window=1000)
    handler = AcquisitionHandler(slot, monitor=monitor, reconstruct_fn=RecordingReconstruct(fail_on={2}))
    for i in range(5):
        handler(make_cloud(sequence=i))

    assert monitor.count == 5
    assert handler.stats.frames_received == 5


def test_real_reconstruction_end_to_end(slot, make_cloud):
    handler = AcquisitionHandler(slot, max_edge_length=0.05)
    handler(make_cloud(height=3, width=3, sequence=4))
    mesh = slot.try_take().mesh
    assert mesh.num_triangles == 8
    assert mesh.source_sequence == 4


def test_render_tick_without_data_sleeps_and_leaves_viewer_alone(slot, viewer, monkeypatch):
    sleeps = []
    monkeypatch.setattr("live_mesh.handlers.time.sleep", sleeps.append)
    handler = RenderTickHandler(slot, idle_sleep=0.001)

    handler(viewer)
    handler(viewer)

    assert sleeps == [0.001, 0.001]
    assert viewer.meshes == []
    assert viewer.representations == []
    assert handler.stats.rendered == 0
    assert handler.stats.idle_ticks == 2


def test_render_tick_replaces_named_surface(slot, viewer, make_cloud):
    monitor = FrameRateMonitor("visualization", window=1000)
    handler = RenderTickHandler(slot, monitor=monitor, representation='surface')

    first = Mesh(source_sequence=0)
    slot.publish(first, make_cloud(sequence=0))
    handler(viewer)

    assert viewer.meshes == [("surface", first)]
    assert viewer.representations == ['surface']
    assert viewer.clouds == []
    assert viewer.camera_resets == 1
    assert monitor.count == 1

    second = Mesh(source_sequence=1)
    slot.publish(second, make_cloud(sequence=1))
    handler(viewer)
    assert viewer.meshes[-1] == ("surface", second)
    assert viewer.camera_resets == 1
    assert handler.stats.rendered == 2


def test_render_tick_can_forward_raw_cloud(slot, viewer, make_cloud):
    handler = RenderTickHandler(slot, show_cloud=True)
    cloud = make_cloud()
    slot.publish(Mesh(), cloud)
    handler(viewer)
    assert viewer.clouds == [("cloud", cloud)]


def test_unknown_representation_rejected_up_front(slot):
    with pytest.raises(ValueError):
        RenderTickHandler(slot, representation='points')


def test_handler_stats_only_carry_their_own_counters(slot):
    acquisition = AcquisitionHandler(slot).stats.as_dict()
    render = RenderTickHandler(slot).stats.as_dict()

    assert set(acquisition) == {'frames_received', 'reconstructions', 'skipped', 'failures', 'published'}
    assert set(render) == {'rendered', 'idle_ticks'}
