import logging
import os
import typing

import mido

import cyclesnap.constants
import cyclesnap.errors
import cyclesnap.events
import cyclesnap.midi_utils


logger = logging.getLogger(__name__)


Bucket = typing.List[cyclesnap.events.TimedEvent]


class MidiGrid:

	"""
	A source MIDI file cut into segments at every distinct event start.

	Loading merges all tracks, takes a single tempo from the first
	``set_tempo``, and builds a grid of time points: ``0`` plus every event
	start that is more than 0.001 ticks after the previous point. The gaps
	between consecutive points are the segment *deltas*.

	Every event (apart from end-of-track markers) is then assigned to the
	grid point nearest its start and stored with its offset from that point,
	so the groove inside a segment survives any later stretching.

	Buckets are indexed by grid point. With ``M`` segments there are
	``M + 1`` buckets; bucket ``M`` is the closing bucket holding events at
	(or past) the final grid line.

	Nearest-point bucketing is an approximation: an event exactly halfway
	between two points goes to the earlier one.
	"""

	def __init__ (self) -> None:

		"""Create an empty, unloaded grid."""

		self.clear()

	def clear (self) -> None:

		"""Forget any loaded source and return to the unloaded state."""

		self.source: typing.Optional[mido.MidiFile] = None
		self.bpm: float = cyclesnap.constants.DEFAULT_BPM
		self.grid: typing.List[float] = []
		self.deltas: typing.List[float] = []
		self.total_duration: float = 0.0
		self.buckets: typing.List[Bucket] = []

	@property
	def is_loaded (self) -> bool:
		return self.source is not None

	@property
	def track_count (self) -> int:
		return len(self.source.tracks) if self.source is not None else 0

	@property
	def ticks_per_beat (self) -> int:

		"""Source resolution, falling back to the default for files that report none."""

		if self.source is not None and self.source.ticks_per_beat > 0:
			return self.source.ticks_per_beat
		return cyclesnap.constants.DEFAULT_TICKS_PER_BEAT

	@property
	def segment_count (self) -> int:
		return len(self.deltas)

	def load (self, path: str) -> cyclesnap.errors.Result:

		"""
		Read and segment a MIDI file from disk.

		Returns a failed result with ``NOT_FOUND`` if the path is not a file,
		``CORRUPT_INPUT`` if mido cannot parse it, and ``EMPTY_INPUT`` if it
		has no tracks. Prior state is cleared first in every case.
		"""

		self.clear()

		if not os.path.isfile(path):
			return cyclesnap.errors.Result.failure(cyclesnap.errors.LoadError.NOT_FOUND, f"File not found: {path}")

		try:
			midi = mido.MidiFile(path)
		except Exception as e:
			logger.warning(f"Failed to parse {path}: {e}")
			return cyclesnap.errors.Result.failure(cyclesnap.errors.LoadError.CORRUPT_INPUT, "Corrupt or invalid MIDI file.")

		return self.load_midi(midi)

	def load_midi (self, midi: mido.MidiFile) -> cyclesnap.errors.Result:

		"""
		Segment an already-parsed MIDI file.

		Calling this twice with the same file produces the same grid and buckets.
		"""

		self.clear()

		if len(midi.tracks) == 0:
			return cyclesnap.errors.Result.failure(cyclesnap.errors.LoadError.EMPTY_INPUT, "MIDI file contains no tracks.")

		self.source = midi
		self._analyze_timeline()
		self._segment_events()

		logger.info(
			f"Loaded {self.track_count} track(s), {self.segment_count} segment(s), "
			f"{self.total_duration:.0f} ticks at {self.bpm:.2f} BPM"
		)

		return cyclesnap.errors.Result.success("Source loaded.")

	def _analyze_timeline (self) -> None:

		"""Detect the tempo and build the grid points and segment deltas."""

		assert self.source is not None

		merged = [
			event
			for event in cyclesnap.midi_utils.merge_tracks(self.source)
			if not cyclesnap.events.is_end_of_track(event.message)
		]

		self.bpm = cyclesnap.midi_utils.first_tempo_bpm(merged)

		self.grid = [0.0]
		last_time = 0.0

		for event in merged:
			if event.time > last_time + cyclesnap.constants.GRID_DEBOUNCE_TICKS:
				self.grid.append(event.time)
				last_time = event.time

		self.deltas = []
		self.total_duration = 0.0

		if len(self.grid) < 2:
			self.deltas.append(cyclesnap.constants.FALLBACK_SEGMENT_TICKS)
			self.total_duration = cyclesnap.constants.FALLBACK_SEGMENT_TICKS
			logger.debug("Degenerate timeline - using a single fallback segment")
			return

		for start, end in zip(self.grid, self.grid[1:]):
			delta = end - start
			self.deltas.append(delta)
			self.total_duration += delta

	def _segment_events (self) -> None:

		"""Assign every event to its nearest grid point, storing the offset."""

		assert self.source is not None

		self.buckets = [[] for _ in range(self.segment_count + 1)]

		for track_index, track in enumerate(self.source.tracks):
			for event in cyclesnap.midi_utils.track_to_absolute(track, track_index):

				if cyclesnap.events.is_end_of_track(event.message):
					continue

				index = nearest_grid_index(self.grid, event.time, self.total_duration)
				offset = event.time - self.grid[index]

				self.buckets[index].append(
					cyclesnap.events.TimedEvent(time=offset, track=track_index, message=event.message)
				)

		logger.debug(f"Bucket sizes: {[len(bucket) for bucket in self.buckets]}")


def nearest_grid_index (grid: typing.Sequence[float], time: float, total_duration: float) -> int:

	"""
	Return the index of the grid point closest to ``time``.

	Ties go to the earlier point. An event more than one tick from every
	point that starts at or after ``total_duration`` is placed on the final
	grid point.
	"""

	best_index = 0
	best_distance = float("inf")

	for index, point in enumerate(grid):
		distance = abs(time - point)
		if distance < best_distance:
			best_distance = distance
			best_index = index

	if best_distance > cyclesnap.constants.TRAILING_EVENT_TICKS and time >= total_duration:
		best_index = len(grid) - 1

	return best_index
