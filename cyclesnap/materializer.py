import logging
import math
import typing

import mido

import cyclesnap.constants
import cyclesnap.errors
import cyclesnap.events
import cyclesnap.grid
import cyclesnap.midi_utils
import cyclesnap.solver


logger = logging.getLogger(__name__)


Stream = typing.List[typing.Tuple[float, cyclesnap.events.Message]]


class Materializer:

	"""
	Replays a segmented source as a geometrically warped MIDI file.

	Step ``k`` advances the clock by ``delta[k % M] * step_scale ** k`` and
	then places the events of the next bucket there, with their groove
	offsets scaled by the same factor. When the pattern wraps, the closing
	bucket is placed at the loop boundary and, unless this was the last
	step, bucket 0 is placed again to start the next pass.

	Each call to ``generate()`` builds a new ``mido.MidiFile`` from scratch
	and replaces ``timeline``; the grid is only read.
	"""

	def __init__ (self, grid: cyclesnap.grid.MidiGrid) -> None:

		"""Attach to a grid. Nothing is generated until ``generate()``."""

		self.grid = grid
		self.timeline: typing.Optional[mido.MidiFile] = None

	def clear (self) -> None:

		"""Drop the generated timeline."""

		self.timeline = None

	def generate (self, total_steps: int, step_scale: float) -> cyclesnap.errors.Result:

		"""
		Build the warped timeline.

		Parameters:
			total_steps: Number of elementary steps (``N``) to play.
			step_scale: Scale factor per step (``s_step``).

		Returns a failed result with ``NO_SOURCE_LOADED`` before a source is
		loaded, ``EMPTY_MODEL`` when the grid has no segments, and
		``INVALID_PARAMETERS`` for a negative step count, a non-positive scale
		or a timeline that overflows.
		"""

		if not self.grid.is_loaded:
			return cyclesnap.errors.Result.failure(cyclesnap.errors.GenError.NO_SOURCE_LOADED, "No source MIDI loaded.")

		segment_count = self.grid.segment_count
		if segment_count == 0:
			return cyclesnap.errors.Result.failure(cyclesnap.errors.GenError.EMPTY_MODEL, "Model is empty (no time segments).")

		if total_steps < 0 or not math.isfinite(step_scale) or step_scale <= 0:
			return cyclesnap.errors.Result.failure(
				cyclesnap.errors.GenError.INVALID_PARAMETERS,
				f"Invalid generation parameters (steps={total_steps}, scale={step_scale})."
			)

		streams = self._build_streams(total_steps, step_scale)
		if streams is None:
			return cyclesnap.errors.Result.failure(cyclesnap.errors.GenError.INVALID_PARAMETERS, "Step scale overflows the timeline.")

		midi = mido.MidiFile(type=1 if len(streams) > 1 else 0, ticks_per_beat=self.grid.ticks_per_beat)

		for stream in streams:
			midi.tracks.append(cyclesnap.midi_utils.build_track(order_stream(stream)))

		self.timeline = midi

		logger.info(f"Generated {total_steps} steps across {len(streams)} track(s)")

		return cyclesnap.errors.Result.success("Sequence generated.")

	def _build_streams (self, total_steps: int, step_scale: float) -> typing.Optional[typing.List[Stream]]:

		"""
		Place every event at its warped absolute time, one stream per source track.

		Returns None if the warped times overflow.
		"""

		buckets = self.grid.buckets
		deltas = self.grid.deltas
		segment_count = len(deltas)

		streams: typing.List[Stream] = [[] for _ in range(self.grid.track_count)]

		streams[0].append((0.0, mido.MetaMessage("set_tempo", tempo=mido.bpm2tempo(self.grid.bpm))))
		streams[0].append((0.0, mido.MetaMessage("time_signature", numerator=4, denominator=4)))

		def place (bucket_index: int, base_time: float, scale: float) -> None:
			if bucket_index >= len(buckets):
				return
			for event in buckets[bucket_index]:
				if 0 <= event.track < len(streams):
					streams[event.track].append((base_time + event.time * scale, event.message))

		if buckets:
			place(0, 0.0, 1.0)

		now = 0.0

		for k in range(total_steps):

			segment_index = k % segment_count
			scale = cyclesnap.solver.saturating_power(step_scale, k)

			now += deltas[segment_index] * scale

			if not math.isfinite(now):
				return None

			next_bucket = segment_index + 1

			if next_bucket == segment_count:
				# Closing events of this pass land on the loop boundary...
				place(segment_count, now, scale)
				# ...which is also where the next pass starts.
				if k < total_steps - 1:
					place(0, now, scale)
			else:
				place(next_bucket, now, scale)

		for stream in streams:
			end_time = max([now] + [time for time, _ in stream])
			if not math.isfinite(end_time):
				return None
			stream.append((end_time, mido.MetaMessage("end_of_track")))

		return streams


def order_stream (stream: Stream) -> typing.List[typing.Tuple[int, cyclesnap.events.Message]]:

	"""
	Sort a stream and quantize it to whole ticks.

	Events are ordered by time. Events within ``SIMULTANEITY_TICKS`` of the
	first event of their group count as simultaneous: they are ordered by
	``EventClass`` (meta, note-off, note-on, controller, other, end-of-track),
	otherwise keep their relative order, and share that first event's tick.
	Times are rounded half-up only after ordering, so events that are
	distinct in time keep their time order even when they land on one tick.
	"""

	by_time = sorted(stream, key=lambda item: item[0])

	ticked: typing.List[typing.Tuple[int, cyclesnap.events.Message]] = []
	start = 0

	while start < len(by_time):

		anchor = by_time[start][0]
		end = start + 1

		while end < len(by_time) and by_time[end][0] - anchor < cyclesnap.constants.SIMULTANEITY_TICKS:
			end += 1

		group = sorted(by_time[start:end], key=lambda item: cyclesnap.events.classify(item[1]))
		tick = cyclesnap.events.round_half_up(anchor)

		ticked.extend((tick, message) for _, message in group)
		start = end

	return ticked
