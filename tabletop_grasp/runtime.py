"""
Runtime Module

Continuous operation of the tabletop pipeline: frames arrive on a named
channel, at most one frame is processed at a time, and finished frames are
handed to the sink on its own thread.
"""

import itertools
import logging
import threading
from collections import defaultdict, deque
from typing import Any, Callable, Dict, List, Optional

from .orchestrator import FrameSuperseded
from .pipeline import TabletopGraspSystem
from .scene import FrameResult
from .sinks import SceneSink

logger = logging.getLogger(__name__)


class FrameBus:
    """In-process registry of named frame channels."""

    def __init__(self):
        self._subscribers: Dict[str, List[Callable[[Any], None]]] = defaultdict(list)
        self._lock = threading.Lock()

    def subscribe(self, topic: str, callback: Callable[[Any], None]) -> None:
        with self._lock:
            self._subscribers[topic].append(callback)

    def unsubscribe(self, topic: str, callback: Callable[[Any], None]) -> None:
        with self._lock:
            if callback in self._subscribers.get(topic, []):
                self._subscribers[topic].remove(callback)

    def publish(self, topic: str, frame: Any) -> int:
        """Deliver frame to every subscriber of topic; returns the number of deliveries."""
        with self._lock:
            callbacks = list(self._subscribers.get(topic, []))
        for callback in callbacks:
            callback(frame)
        return len(callbacks)


class LatestSlot:
    """
    Single-item buffer where a new item replaces an unconsumed one.
    """

    def __init__(self):
        self._item = None
        self._full = False
        self._closed = False
        self._cond = threading.Condition()

    def put(self, item) -> bool:
        """Store item; returns True when an unconsumed item was replaced."""
        with self._cond:
            replaced = self._full
            self._item = item
            self._full = True
            self._cond.notify()
            return replaced

    def take(self, timeout: Optional[float] = None):
        """Remove and return the item, or None on timeout or close."""
        with self._cond:
            if not self._full and not self._closed:
                self._cond.wait(timeout)
            if not self._full:
                return None
            item = self._item
            self._item = None
            self._full = False
            return item

    def close(self):
        with self._cond:
            self._closed = True
            self._cond.notify_all()

    @property
    def empty(self) -> bool:
        with self._cond:
            return not self._full


class SceneRuntime:
    """
    Drives a TabletopGraspSystem from a FrameBus topic into a SceneSink.

    The processing thread never waits on the sink; a frame that arrives
    while another is in flight waits in a one-deep slot and replaces any
    older waiting frame. Finished frames reach the sink the same way.
    """

    def __init__(
        self,
        system: TabletopGraspSystem,
        sink: SceneSink,
        bus: FrameBus,
        topic: str,
        cancel_superseded: bool = False,
        take_timeout: float = 0.1,
        history_size: int = 0
    ):
        """
        Args:
            system: Per-frame pipeline
            sink: Consumer of finished frames, used only from the sink thread
            bus: Channel registry the frames arrive on
            topic: Name of the frame channel
            cancel_superseded: Cancel the grasp stage of the frame in flight when a newer frame arrives
            take_timeout: Seconds the worker threads wait for input before re-checking for shutdown
            history_size: Number of recent FrameResults kept in history
        """
        self.system = system
        self.sink = sink
        self.bus = bus
        self.topic = topic
        self.cancel_superseded = cancel_superseded
        self.take_timeout = take_timeout

        self.results: Dict[str, int] = defaultdict(int)
        self.history = deque(maxlen=history_size)
        self._frames = LatestSlot()
        self._outputs = LatestSlot()
        self._ids = itertools.count()
        self._stop = threading.Event()
        self._current_cancel: Optional[threading.Event] = None
        # Frames accepted but not yet presented or discarded
        self._pending = 0
        self._state = threading.Condition()
        self._threads: List[threading.Thread] = []

    @classmethod
    def from_config(
        cls,
        config,
        system: TabletopGraspSystem,
        sink: SceneSink,
        bus: FrameBus,
        history_size: int = 0
    ) -> "SceneRuntime":
        return cls(
            system, sink, bus, config.topic,
            cancel_superseded=config.runtime.cancel_superseded,
            take_timeout=config.runtime.take_timeout,
            history_size=history_size
        )

    def _count(self, key: str) -> None:
        """Increment one results counter under the state lock."""
        with self._state:
            self.results[key] += 1

    def _settle(self, key: Optional[str] = None) -> None:
        """
        Mark one accepted frame as finished and wake wait_idle.

        Args:
            key: Results counter to increment, if any
        """
        with self._state:
            if key is not None:
                self.results[key] += 1
            self._pending -= 1
            self._state.notify_all()

    def _on_frame(self, frame: Any) -> None:
        """
        Bus callback: number the frame and offer it to the processing slot.

        Args:
            frame: Point cloud or array as published on the topic
        """
        frame_id = next(self._ids)
        with self._state:
            self.results["received"] += 1
            if self._frames.put((frame_id, frame)):
                self.results["dropped"] += 1
                logger.debug("Frame %d replaced an unprocessed frame", frame_id)
            else:
                self._pending += 1
            if self.cancel_superseded and self._current_cancel is not None:
                self._current_cancel.set()

    def _process_loop(self) -> None:
        """Processing thread: run one frame at a time until stopped."""
        while not self._stop.is_set():
            item = self._frames.take(self.take_timeout)
            if item is None:
                continue
            frame_id, frame = item
            cancel = threading.Event()
            with self._state:
                self._current_cancel = cancel
            try:
                result = self.system.process_frame(frame, frame_id=frame_id, cancel_event=cancel)
            except FrameSuperseded as exc:
                logger.info("Frame %d superseded: %s", frame_id, exc)
                self._settle("superseded")
                continue
            except Exception:
                logger.exception("Frame %d could not be processed", frame_id)
                self._settle("failed")
                continue
            finally:
                with self._state:
                    self._current_cancel = None

            self._count(result.outcome.value)
            self.history.append(result)
            if self._outputs.put(result):
                self._settle("not_presented")

    def _sink_loop(self) -> None:
        """Sink thread: present finished frames, poll the sink while idle, close it on exit."""
        try:
            while not self._stop.is_set():
                result = self._outputs.take(self.take_timeout)
                if result is None:
                    self.sink.poll()
                    continue
                self._present(result)
        finally:
            self.sink.close()

    def _present(self, result: FrameResult) -> None:
        """
        Hand one FrameResult to the sink.

        Args:
            result: Finished frame; its remainder, or the filtered cloud when there is none, is drawn as the raw cloud
        """
        cloud = result.remainder if result.remainder is not None else result.cloud
        try:
            self.sink.present(result.surface, result.clusters, result.grasps, cloud=cloud)
        except Exception:
            logger.exception("Sink failed on frame %d", result.frame_id)
            self._settle("sink_errors")
            return
        self._settle("presented")

    def start(self) -> "SceneRuntime":
        """
        Start the processing and sink threads and subscribe to the topic.

        A runtime runs once: stop() closes its slots and its sink for good.

        Returns:
            The runtime itself

        Raises:
            RuntimeError: If the runtime is running or was stopped
        """
        if self._threads:
            raise RuntimeError("SceneRuntime already started")
        if self._stop.is_set():
            raise RuntimeError("SceneRuntime was stopped and cannot be restarted")
        self._threads = [
            threading.Thread(target=self._process_loop, name="scene-process", daemon=True),
            threading.Thread(target=self._sink_loop, name="scene-sink", daemon=True)
        ]
        for thread in self._threads:
            thread.start()
        self.bus.subscribe(self.topic, self._on_frame)
        logger.info("Listening for frames on '%s'", self.topic)
        return self

    def wait_idle(self, timeout: Optional[float] = None) -> bool:
        """Block until every accepted frame was presented or discarded."""
        with self._state:
            return self._state.wait_for(lambda: self._pending == 0, timeout)

    def stop(self, timeout: float = 5.0) -> None:
        """
        Unsubscribe, cancel the frame in flight and join both threads.

        Args:
            timeout: Seconds to wait for each thread
        """
        self.bus.unsubscribe(self.topic, self._on_frame)
        with self._state:
            if self._current_cancel is not None:
                self._current_cancel.set()
        self._stop.set()
        self._frames.close()
        self._outputs.close()
        for thread in self._threads:
            thread.join(timeout)
        self._threads = []
        self.system.close()
        logger.info("Stopped; %s", dict(self.results))

    def __enter__(self):
        return self.start()

    def __exit__(self, exc_type, exc, tb):
        self.stop()
