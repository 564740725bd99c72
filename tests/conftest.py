import pathlib
import typing

import mido
import pytest

import cyclesnap.grid


TimedMessage = typing.Tuple[int, typing.Union[mido.Message, mido.MetaMessage]]

SEGMENT_TICKS = 480
PATTERN_PITCHES = [60, 62, 64, 65]


def make_midi (tracks: typing.List[typing.List[TimedMessage]], ticks_per_beat: int = 960) -> mido.MidiFile:

	"""
	Build a MIDI file from per-track lists of (absolute tick, message).

	Each list must already be in time order; messages keep their list order
	within a tick. An ``end_of_track`` is appended to every track.
	"""

	midi = mido.MidiFile(type=1 if len(tracks) > 1 else 0, ticks_per_beat=ticks_per_beat)

	for events in tracks:
		track = mido.MidiTrack()
		last = 0
		for tick, message in events:
			track.append(message.copy(time=tick - last))
			last = tick
		track.append(mido.MetaMessage("end_of_track", time=0))
		midi.tracks.append(track)

	return midi


def four_segment_events (bpm: float = 120) -> typing.List[TimedMessage]:

	"""
	Four back-to-back notes, each one segment (480 ticks) long, with a tempo at tick 0.

	Grid: 0, 480, 960, 1440, 1920. The last note-off sits on the final grid line.
	"""

	events: typing.List[TimedMessage] = [(0, mido.MetaMessage("set_tempo", tempo=mido.bpm2tempo(bpm)))]

	for index, pitch in enumerate(PATTERN_PITCHES):
		start = index * SEGMENT_TICKS
		if index > 0:
			events.append((start, mido.Message("note_off", note=PATTERN_PITCHES[index - 1], velocity=0)))
		events.append((start, mido.Message("note_on", note=pitch, velocity=100)))

	events.append((len(PATTERN_PITCHES) * SEGMENT_TICKS, mido.Message("note_off", note=PATTERN_PITCHES[-1], velocity=0)))

	return events


def absolute_messages (track: mido.MidiTrack) -> typing.List[TimedMessage]:

	"""Convert a track back to (absolute tick, message) pairs."""

	now = 0
	result: typing.List[TimedMessage] = []
	for message in track:
		now += message.time
		result.append((now, message))
	return result


@pytest.fixture
def four_segment_midi () -> mido.MidiFile:

	"""Single-track file with four equal 480-tick segments at 120 BPM, 960 PPQ."""

	return make_midi([four_segment_events()])


@pytest.fixture
def four_segment_file (tmp_path: pathlib.Path, four_segment_midi: mido.MidiFile) -> str:

	"""The four-segment file written to disk."""

	path = str(tmp_path / "four.mid")
	four_segment_midi.save(path)
	return path


@pytest.fixture
def two_track_file (tmp_path: pathlib.Path) -> str:

	"""Tempo on track 0, the four-note pattern on track 1."""

	events = four_segment_events()
	tempo, notes = events[:1], events[1:]

	path = str(tmp_path / "two.mid")
	make_midi([tempo, notes]).save(path)
	return path


@pytest.fixture
def four_segment_grid (four_segment_midi: mido.MidiFile) -> cyclesnap.grid.MidiGrid:

	"""A grid loaded from the four-segment file."""

	grid = cyclesnap.grid.MidiGrid()
	result = grid.load_midi(four_segment_midi)
	assert result.ok
	return grid
