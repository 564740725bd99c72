import logging
import typing

import mido

import cyclesnap.constants
import cyclesnap.events


logger = logging.getLogger(__name__)


def track_to_absolute (track: mido.MidiTrack, track_index: int) -> typing.List[cyclesnap.events.TimedEvent]:

	"""
	Convert a mido track (delta times) into events with absolute tick times.
	"""

	events: typing.List[cyclesnap.events.TimedEvent] = []
	now = 0

	for message in track:
		now += message.time
		events.append(cyclesnap.events.TimedEvent(time=float(now), track=track_index, message=message))

	return events


def merge_tracks (midi: mido.MidiFile) -> typing.List[cyclesnap.events.TimedEvent]:

	"""
	Flatten every track of a file into one list ordered by absolute time.

	The sort is stable, so events at the same tick keep track order and then
	their order within the track.
	"""

	merged: typing.List[cyclesnap.events.TimedEvent] = []

	for index, track in enumerate(midi.tracks):
		merged.extend(track_to_absolute(track, index))

	merged.sort(key=lambda event: event.time)
	return merged


def first_tempo_bpm (events: typing.Iterable[cyclesnap.events.TimedEvent]) -> float:

	"""
	Return the BPM of the first ``set_tempo`` event, or the default tempo.

	Later tempo changes are ignored; the whole file is treated as one tempo.
	"""

	for event in events:
		if event.message.is_meta and event.message.type == "set_tempo":
			if event.message.tempo > 0:
				return mido.tempo2bpm(event.message.tempo)
			break

	return cyclesnap.constants.DEFAULT_BPM


def build_track (ticked: typing.Iterable[typing.Tuple[int, cyclesnap.events.Message]]) -> mido.MidiTrack:

	"""
	Build a mido track from (absolute tick, message) pairs already in order.

	Each message is copied with its delta time. A delta that would be
	negative is clamped to zero.
	"""

	track = mido.MidiTrack()
	last_tick = 0

	for tick, message in ticked:

		delta = tick - last_tick

		if delta < 0:
			logger.debug(f"Clamped negative delta {delta} for {message.type}")
			delta = 0

		track.append(message.copy(time=delta))
		last_tick += delta

	return track
