"""
Generation context: schedules many tiles and serialises their output.

Compute phases run on a bounded ``ThreadPoolExecutor``.  Each finished
future is posted to a ``queue.Queue``; :meth:`GenerationContext.pump`
drains that queue on the thread that owns the scene, first deleting the
tile's previous objects and then instantiating the new ones, one object
per step, checking for cancellation between steps.

Typical use from a host loop::

    context = biomes.generate_all()
    while not context.is_complete:
        context.pump(max_items=200)
        ...                              # host frame
"""

import itertools
import logging
import queue
import threading
import time
from concurrent.futures import CancelledError, ThreadPoolExecutor

from .generator import TileState

log = logging.getLogger(__name__)


DEFAULT_MAX_WORKERS = 8


class _ApplyJob:
    """Stepwise deletion + instantiation of one computed tile."""

    def __init__(self, context, generator, descriptors):
        self.generator = generator
        self.steps = self._run(context, generator, descriptors)

    @staticmethod
    def _run(context, generator, descriptors):
        store = context.biomes.store
        cancel_event = context.cancel_event
        for _ in store.iter_delete_tile(generator.tile, cancel_event):
            yield
        if cancel_event.is_set():
            return
        for _ in generator.iter_apply(descriptors, store, cancel_event):
            yield


class GenerationContext:
    """
    One generation request over a set of tiles.

    Args:
        biomes:      Host exposing ``create_tile_generator(tx, ty)`` and a
                     ``store`` (:class:`~biome_builder.scene.GeneratedObjectStore`).
        max_workers: Upper bound on concurrently computing tiles.
    """

    _ids = itertools.count()

    def __init__(self, biomes, max_workers=DEFAULT_MAX_WORKERS):
        self.id = next(GenerationContext._ids)
        self.biomes = biomes
        self.max_workers = max(1, int(max_workers))
        self.cancel_event = threading.Event()
        self.failed_tiles = {}

        self._requested = []
        self._still_to_generate = set()
        self._lock = threading.Lock()
        self._results = queue.Queue()
        self._executor = None
        self._futures = {}
        self._job = None
        self._total = 0
        self._processed = 0
        self._started = False
        self._is_complete = False
        self._observer = None

    def __repr__(self):
        completed, total = self.progress
        return "GenerationContext({}, {}/{}{})".format(
            self.id, completed, total, ", complete" if self._is_complete else "")

    # ------------------------------------------------------------------
    # Setup
    # ------------------------------------------------------------------

    def add_tile(self, tx, ty=None):
        """Queue a tile; accepts ``add_tile(x, y)`` or ``add_tile((x, y))``."""
        if ty is None:
            tx, ty = tx
        tile = (int(tx), int(ty))
        if self._started:
            raise RuntimeError("Cannot add tiles after generation has started")
        if tile not in self._requested:
            self._requested.append(tile)
        return tile

    @property
    def requested_tiles(self):
        return list(self._requested)

    def set_progress_observer(self, observer):
        """*observer(total, current)* is called whenever progress changes."""
        self._observer = observer

    # ------------------------------------------------------------------
    # State
    # ------------------------------------------------------------------

    @property
    def is_complete(self):
        return self._is_complete

    @property
    def is_cancelled(self):
        return self.cancel_event.is_set()

    @property
    def tiles_still_to_generate(self):
        with self._lock:
            return sorted(self._still_to_generate)

    @property
    def progress(self):
        """``(completed, total)`` tile counts."""
        with self._lock:
            return self._total - len(self._still_to_generate), self._total

    def _update_progress(self):
        if self._observer is None:
            return
        completed, total = self.progress
        self._observer(total, completed)

    # ------------------------------------------------------------------
    # Compute phase
    # ------------------------------------------------------------------

    def generate(self):
        """Create tile generators and submit their compute phases."""
        if self._started:
            raise RuntimeError("Generation context {} already started".format(self.id))
        self._started = True

        log.info("Starting biome generation context %d, tiles: %d",
                 self.id, len(self._requested))

        generators = [self.biomes.create_tile_generator(tx, ty) for tx, ty in self._requested]
        with self._lock:
            self._still_to_generate = set(self._requested)
            self._total = len(generators)

        if not generators:
            self._finish()
            return self

        self._executor = ThreadPoolExecutor(
            max_workers=min(self.max_workers, len(generators)),
            thread_name_prefix="biome-context-{}".format(self.id),
        )
        for generator in generators:
            future = self._executor.submit(self._compute, generator)
            self._futures[future] = generator
            future.add_done_callback(self._results.put)
        return self

    def _compute(self, generator):
        if self.cancel_event.is_set():
            return None
        return generator.compute(self.cancel_event)

    # ------------------------------------------------------------------
    # Apply phase (owning thread only)
    # ------------------------------------------------------------------

    def _take_result(self, block, timeout):
        try:
            future = self._results.get(block=block, timeout=timeout)
        except queue.Empty:
            return False

        generator = self._futures.pop(future)
        try:
            descriptors = future.result()
        except CancelledError:
            self._mark_processed()
            return True
        except Exception as e:
            log.exception("Tile %s failed in biome generation context %d",
                          generator.tile, self.id)
            self.failed_tiles[generator.tile] = e
            with self._lock:
                self._still_to_generate.discard(generator.tile)
            self._mark_processed()
            return True

        if descriptors is None:
            # Cancelled during compute; the tile stays in the remaining list
            self._mark_processed()
            return True

        self._job = _ApplyJob(self, generator, descriptors)
        return True

    def _step_job(self):
        try:
            next(self._job.steps)
            return
        except StopIteration:
            pass

        generator = self._job.generator
        self._job = None
        if generator.state is TileState.DONE:
            with self._lock:
                self._still_to_generate.discard(generator.tile)
        self._mark_processed()

    def _mark_processed(self):
        self._processed += 1
        self._update_progress()
        if self._processed >= self._total and not self._is_complete:
            self._finish()

    def pump(self, max_items=None, block=False, timeout=None):
        """
        Drain finished compute phases into the scene.

        Each step deletes one old object, instantiates one new object, or
        picks up one finished tile.  Must be called on the thread that owns
        the scene.

        Args:
            max_items: Maximum number of steps; None drains everything
                       currently available.
            block:     Wait for a compute phase to finish when nothing is
                       ready.
            timeout:   Seconds to wait when *block* is true.

        Returns:
            int: Number of steps performed.
        """
        steps = 0
        while not self._is_complete and (max_items is None or steps < max_items):
            if self.cancel_event.is_set():
                break

            if self._job is None:
                if not self._take_result(block and steps == 0, timeout):
                    break
            else:
                self._step_job()
            steps += 1
        return steps

    def wait(self, timeout=None):
        """
        Pump on the calling thread until the context completes.

        Returns:
            bool: ``is_complete`` when the call returns.
        """
        deadline = None if timeout is None else time.monotonic() + timeout
        while not self._is_complete:
            remaining = None
            if deadline is not None:
                remaining = deadline - time.monotonic()
                if remaining <= 0:
                    break
            self.pump(block=True, timeout=remaining if remaining is not None else 0.1)
        return self._is_complete

    # ------------------------------------------------------------------
    # Completion / cancellation
    # ------------------------------------------------------------------

    def _shutdown_executor(self, cancel_futures=False, wait=False):
        if self._executor is not None:
            self._executor.shutdown(wait=wait, cancel_futures=cancel_futures)

    def _finish(self):
        self._is_complete = True
        self._shutdown_executor()
        self._update_progress()
        if self.failed_tiles:
            log.warning("Biome generation context %d finished with %d failed tiles",
                        self.id, len(self.failed_tiles))
        else:
            log.info("Biome generation context %d finished!", self.id)

    def cancel(self, clear_remaining_list=False, wait=False):
        """
        Stop generating.

        Tiles not yet fully instantiated stay in
        :attr:`tiles_still_to_generate` unless *clear_remaining_list* is
        true.  A cancelled tile may hold partially instantiated objects.

        Workers stop at their next rule boundary.  Without *wait* a compute
        phase already running may still be reading the type map when this
        returns; with *wait* the call blocks until every worker has exited.
        Calling again on a finished context still honours both flags.
        """
        if clear_remaining_list:
            with self._lock:
                self._still_to_generate.clear()

        if self._is_complete:
            self._shutdown_executor(wait=wait)
            return

        log.info("Cancelling biome generation context %d", self.id)
        self.cancel_event.set()
        self._job = None
        self._shutdown_executor(cancel_futures=True, wait=wait)

        self._is_complete = True
        self._update_progress()
