"""Integration tests for PyramidRunner with in-process workers."""

import asyncio
import json
import threading
import time

import pytest

from contourgen.errors import GenerationError
from contourgen.models.job import PyramidJob, RunState
from contourgen.models.tile import Tile
from contourgen.services.pyramid_service import PyramidGenerator, PyramidRunner, tile_path
from contourgen.services.worker_service import InProcessWorker
from contourgen.utils.tile_utils import expand_pyramid


class TestPyramidGenerator:
    def test_writes_every_tile(self, settings, tile_service):
        job = PyramidJob(root=Tile(2, 1, 1), settings=settings)
        count = asyncio.run(PyramidGenerator(job, tile_service).run())

        assert count == 5
        for tile in expand_pyramid(Tile(2, 1, 1), 3):
            path = tile_path(settings.output_dir, tile)
            assert path.read_bytes() == f"tile {tile.tile_id}".encode()

    def test_batches_are_sorted_by_zoom(self, settings, tile_service):
        job = PyramidJob(root=Tile(1, 0, 0), settings=settings.model_copy(update={"batch_size": 1}))
        asyncio.run(PyramidGenerator(job, tile_service).run())

        assert tile_service.calls == expand_pyramid(Tile(1, 0, 0), 3)


class TestPyramidRunner:
    """Test run orchestration end to end."""

    def test_bbox_run(self, settings, tile_service, sample_bbox):
        runner = PyramidRunner(settings, InProcessWorker(tile_service), processes=3)
        result = asyncio.run(runner.run_bbox(sample_bbox, 2))

        assert sorted(result.roots) == [Tile(2, 1, 1), Tile(2, 1, 2), Tile(2, 2, 1), Tile(2, 2, 2)]
        assert len(tile_service.calls) == 4 * 5
        assert len(set(tile_service.calls)) == 20

        metadata = json.loads(result.metadata_path.read_text())
        assert metadata["name"] == "Contour_z2_Z3"
        assert runner.state == RunState.DONE

    def test_state_sequence(self, settings, tile_service):
        runner = PyramidRunner(settings, InProcessWorker(tile_service), processes=2)
        result = asyncio.run(runner.run_pyramid(Tile(3, 0, 0)))

        assert result.states == [
            RunState.IDLE,
            RunState.BUILDING_TILE_SET,
            RunState.DISPATCHING,
            RunState.AWAITING_WORKERS,
            RunState.WRITING_METADATA,
            RunState.DONE,
        ]

    def test_zoom_run_reports_progress(self, settings, tile_service):
        progress = []
        runner = PyramidRunner(
            settings,
            InProcessWorker(tile_service),
            processes=3,
            progress_callback=lambda done, total: progress.append((done, total)),
        )
        asyncio.run(runner.run_zoom(1))

        assert [done for done, _ in progress] == [1, 2, 3, 4]
        assert all(total == 4 for _, total in progress)

    def test_concurrency_bounded_by_batch_size_and_processes(self, settings):
        lock = threading.Lock()
        in_flight = 0
        peak = 0

        class SlowTileService:
            def fetch_tile(self, tile, cancel_event=None):
                nonlocal in_flight, peak
                with lock:
                    in_flight += 1
                    peak = max(peak, in_flight)
                time.sleep(0.01)
                with lock:
                    in_flight -= 1
                return b"tile"

        runner = PyramidRunner(
            settings.model_copy(update={"batch_size": 3}),
            InProcessWorker(SlowTileService()),
            processes=2,
        )
        result = asyncio.run(runner.run_zoom(1))

        assert len(result.roots) == 4
        assert 2 <= peak <= 6

    def test_failure_skips_metadata(self, settings, make_tile_service, sample_bbox):
        service = make_tile_service(fail_on=[Tile(3, 2, 2)])
        runner = PyramidRunner(settings, InProcessWorker(service), processes=2)

        with pytest.raises(GenerationError, match="boom 3/2/2"):
            asyncio.run(runner.run_bbox(sample_bbox, 2))

        assert runner.state == RunState.ERRORED
        assert not (settings.output_dir / "metadata.json").exists()

    def test_root_deeper_than_max_zoom(self, settings, tile_service):
        runner = PyramidRunner(settings, InProcessWorker(tile_service))

        with pytest.raises(ValueError):
            asyncio.run(runner.run_pyramid(Tile(4, 0, 0)))

        assert runner.state == RunState.ERRORED
        assert tile_service.calls == []

    def test_runner_is_single_use(self, settings, tile_service):
        runner = PyramidRunner(settings, InProcessWorker(tile_service))
        asyncio.run(runner.run_pyramid(Tile(3, 1, 1)))

        with pytest.raises(RuntimeError):
            asyncio.run(runner.run_pyramid(Tile(3, 1, 1)))

    def test_rejects_zero_processes(self, settings, tile_service):
        with pytest.raises(ValueError):
            PyramidRunner(settings, InProcessWorker(tile_service), processes=0)
