import dataclasses
import math

import mido
import pytest

import conftest
import cyclesnap.errors
import cyclesnap.events
import cyclesnap.grid
import cyclesnap.materializer


def _note_times (track: mido.MidiTrack, message_type: str = "note_on") -> list:

	"""(tick, note) for every message of a type, in track order."""

	return [
		(tick, message.note)
		for tick, message in conftest.absolute_messages(track)
		if message.type == message_type
	]


# ---------------------------------------------------------------------------
# Failures
# ---------------------------------------------------------------------------

def test_generate_without_source_fails () -> None:

	"""Generating before anything is loaded reports NO_SOURCE_LOADED."""

	materializer = cyclesnap.materializer.Materializer(cyclesnap.grid.MidiGrid())
	result = materializer.generate(4, 1.0)

	assert result.error == cyclesnap.errors.GenError.NO_SOURCE_LOADED
	assert materializer.timeline is None


def test_generate_with_no_segments_fails (four_segment_grid: cyclesnap.grid.MidiGrid) -> None:

	"""A grid without segments reports EMPTY_MODEL."""

	four_segment_grid.deltas = []
	result = cyclesnap.materializer.Materializer(four_segment_grid).generate(4, 1.0)

	assert result.error == cyclesnap.errors.GenError.EMPTY_MODEL


@pytest.mark.parametrize("steps, scale", [(-1, 1.0), (4, 0.0), (4, -1.5), (4, float("nan")), (4, float("inf"))])
def test_generate_rejects_bad_parameters (four_segment_grid: cyclesnap.grid.MidiGrid, steps: int, scale: float) -> None:

	"""Negative steps and non-positive or non-finite scales are rejected."""

	result = cyclesnap.materializer.Materializer(four_segment_grid).generate(steps, scale)

	assert result.error == cyclesnap.errors.GenError.INVALID_PARAMETERS


def test_generate_reports_overflow (four_segment_grid: cyclesnap.grid.MidiGrid) -> None:

	"""A scale that blows the timeline up to infinity fails instead of raising."""

	result = cyclesnap.materializer.Materializer(four_segment_grid).generate(400, 1e10)

	assert result.error == cyclesnap.errors.GenError.INVALID_PARAMETERS


# ---------------------------------------------------------------------------
# Timing
# ---------------------------------------------------------------------------

def test_unscaled_single_loop_reproduces_source (four_segment_grid: cyclesnap.grid.MidiGrid) -> None:

	"""One loop at scale 1 places every note where it was."""

	materializer = cyclesnap.materializer.Materializer(four_segment_grid)
	assert materializer.generate(4, 1.0).ok

	track = materializer.timeline.tracks[0]

	assert _note_times(track, "note_on") == [(0, 60), (480, 62), (960, 64), (1440, 65)]
	assert _note_times(track, "note_off") == [(480, 60), (960, 62), (1440, 64), (1920, 65)]


def test_scaled_steps_grow_geometrically (four_segment_grid: cyclesnap.grid.MidiGrid) -> None:

	"""With step scale 2 each segment is twice as long as the previous one."""

	materializer = cyclesnap.materializer.Materializer(four_segment_grid)
	materializer.generate(4, 2.0)

	track = materializer.timeline.tracks[0]

	# 480, 960, 1920, 3840 ticks
	assert _note_times(track, "note_on") == [(0, 60), (480, 62), (1440, 64), (3360, 65)]
	assert _note_times(track, "note_off")[-1] == (7200, 65)


def test_groove_offsets_scale_with_step (four_segment_grid: cyclesnap.grid.MidiGrid) -> None:

	"""An event's offset from its grid point is stretched by the step's scale."""

	bucket = four_segment_grid.buckets[2]
	bucket[1] = dataclasses.replace(bucket[1], time=10.0)

	materializer = cyclesnap.materializer.Materializer(four_segment_grid)
	materializer.generate(4, 2.0)

	notes = dict((note, tick) for tick, note in _note_times(materializer.timeline.tracks[0], "note_on"))

	# Bucket 2 is placed after step 1 (scale 2): 1440 + 10 * 2
	assert notes[64] == 1460


def test_ticks_are_rounded_half_up () -> None:

	"""Fractional warped times round to the nearest tick, halves up."""

	assert cyclesnap.materializer.order_stream([(2.5, mido.Message("note_on", note=60, velocity=1))])[0][0] == 3
	assert cyclesnap.materializer.order_stream([(2.49, mido.Message("note_on", note=60, velocity=1))])[0][0] == 2


def test_rerun_replaces_timeline (four_segment_grid: cyclesnap.grid.MidiGrid) -> None:

	"""Generating again starts from scratch; nothing accumulates."""

	materializer = cyclesnap.materializer.Materializer(four_segment_grid)

	materializer.generate(8, 1.5)
	materializer.generate(4, 1.0)
	again = [list(track) for track in materializer.timeline.tracks]

	fresh = cyclesnap.materializer.Materializer(four_segment_grid)
	fresh.generate(4, 1.0)

	assert again == [list(track) for track in fresh.timeline.tracks]


def test_generate_leaves_grid_untouched (four_segment_grid: cyclesnap.grid.MidiGrid) -> None:

	"""Materializing only reads the grid."""

	before = ([list(b) for b in four_segment_grid.buckets], list(four_segment_grid.deltas))

	cyclesnap.materializer.Materializer(four_segment_grid).generate(12, 0.8)

	assert ([list(b) for b in four_segment_grid.buckets], list(four_segment_grid.deltas)) == before


# ---------------------------------------------------------------------------
# Loop wrap-around
# ---------------------------------------------------------------------------

@pytest.mark.parametrize("loops", [1, 2, 3, 5])
def test_seed_events_repeat_once_per_loop (four_segment_grid: cyclesnap.grid.MidiGrid, loops: int) -> None:

	"""k full loops play bucket 0 exactly k times: the seed plus one per inner loop boundary."""

	materializer = cyclesnap.materializer.Materializer(four_segment_grid)
	materializer.generate(4 * loops, 0.9)

	starts = [tick for tick, note in _note_times(materializer.timeline.tracks[0], "note_on") if note == 60]

	assert len(starts) == loops
	assert starts[0] == 0
	assert starts == sorted(starts)


def test_closing_bucket_played_at_each_loop_end (four_segment_grid: cyclesnap.grid.MidiGrid) -> None:

	"""The final note-off (closing bucket) lands on every loop boundary."""

	materializer = cyclesnap.materializer.Materializer(four_segment_grid)
	materializer.generate(8, 1.0)

	offs = [tick for tick, note in _note_times(materializer.timeline.tracks[0], "note_off") if note == 65]
	ons = [tick for tick, note in _note_times(materializer.timeline.tracks[0], "note_on") if note == 60]

	assert offs == [1920, 3840]
	assert ons == [0, 1920]


def test_partial_loop_stops_mid_pattern (four_segment_grid: cyclesnap.grid.MidiGrid) -> None:

	"""Six steps play one loop and half of the next."""

	materializer = cyclesnap.materializer.Materializer(four_segment_grid)
	materializer.generate(6, 1.0)

	ons = _note_times(materializer.timeline.tracks[0], "note_on")

	assert [note for _, note in ons] == [60, 62, 64, 65, 60, 62, 64]
	assert ons[-1] == (2880, 64)


# ---------------------------------------------------------------------------
# Track layout and ordering
# ---------------------------------------------------------------------------

def test_track_zero_starts_with_tempo_and_time_signature (four_segment_grid: cyclesnap.grid.MidiGrid) -> None:

	"""Track 0 opens with the source tempo and a 4/4 time signature at tick 0."""

	materializer = cyclesnap.materializer.Materializer(four_segment_grid)
	materializer.generate(4, 1.0)

	first, second = list(materializer.timeline.tracks[0])[:2]

	assert first.type == "set_tempo"
	assert first.tempo == mido.bpm2tempo(four_segment_grid.bpm)
	assert first.time == 0
	assert second.type == "time_signature"
	assert (second.numerator, second.denominator) == (4, 4)


def test_one_stream_per_source_track (two_track_file: str) -> None:

	"""Events stay on their source track; each track ends with end_of_track."""

	grid = cyclesnap.grid.MidiGrid()
	grid.load(two_track_file)

	materializer = cyclesnap.materializer.Materializer(grid)
	materializer.generate(8, 1.1)

	midi = materializer.timeline

	assert len(midi.tracks) == 2
	assert midi.type == 1
	assert midi.ticks_per_beat == 960
	assert not any(message.type == "note_on" for message in midi.tracks[0])
	assert sum(1 for message in midi.tracks[1] if message.type == "note_on") == 8

	for track in midi.tracks:
		assert track[-1].type == "end_of_track"
		assert sum(1 for message in track if message.type == "end_of_track") == 1


def test_end_of_track_at_latest_event (four_segment_grid: cyclesnap.grid.MidiGrid) -> None:

	"""The end marker sits at the last event's tick."""

	materializer = cyclesnap.materializer.Materializer(four_segment_grid)
	materializer.generate(4, 1.25)

	timed = conftest.absolute_messages(materializer.timeline.tracks[0])

	assert timed[-1][1].type == "end_of_track"
	assert timed[-1][0] == max(tick for tick, _ in timed)


def test_note_off_precedes_note_on_at_shared_tick () -> None:

	"""A note-on listed before a note-off at the same tick is written after it."""

	events = [
		(0, mido.Message("note_on", note=60, velocity=100)),
		(480, mido.Message("note_on", note=62, velocity=100)),
		(480, mido.Message("note_off", note=60, velocity=0)),
		(960, mido.Message("note_off", note=62, velocity=0)),
	]

	grid = cyclesnap.grid.MidiGrid()
	grid.load_midi(conftest.make_midi([events]))

	materializer = cyclesnap.materializer.Materializer(grid)
	materializer.generate(2, 1.0)

	at_480 = [message for tick, message in conftest.absolute_messages(materializer.timeline.tracks[0]) if tick == 480]

	assert [(message.type, message.note) for message in at_480] == [("note_off", 60), ("note_on", 62)]


def test_order_stream_priority () -> None:

	"""At one tick: meta, note-off, note-on, control change, other, end of track."""

	stream = [
		(10.0, mido.MetaMessage("end_of_track")),
		(10.0, mido.Message("pitchwheel", pitch=100)),
		(10.0, mido.Message("control_change", control=7, value=100)),
		(10.0000004, mido.Message("note_on", note=60, velocity=90)),
		(10.0, mido.Message("note_on", note=61, velocity=0)),
		(9.9999996, mido.Message("note_off", note=62)),
		(10.0, mido.MetaMessage("set_tempo", tempo=500000)),
		(3.0, mido.Message("note_on", note=50, velocity=90)),
	]

	ordered = cyclesnap.materializer.order_stream(stream)

	assert [tick for tick, _ in ordered] == [3, 10, 10, 10, 10, 10, 10, 10]
	assert [cyclesnap.events.classify(message) for _, message in ordered] == [
		cyclesnap.events.EventClass.NOTE_ON,
		cyclesnap.events.EventClass.META,
		cyclesnap.events.EventClass.NOTE_OFF,
		cyclesnap.events.EventClass.NOTE_OFF,
		cyclesnap.events.EventClass.NOTE_ON,
		cyclesnap.events.EventClass.CONTROL_CHANGE,
		cyclesnap.events.EventClass.OTHER,
		cyclesnap.events.EventClass.END_OF_TRACK,
	]


def test_order_stream_keeps_time_order_across_shared_tick () -> None:

	"""Events a fraction of a tick apart keep their time order after rounding to one tick."""

	stream = [
		(10.4, mido.Message("note_off", note=60)),
		(10.3, mido.Message("note_on", note=62, velocity=90)),
	]

	ordered = cyclesnap.materializer.order_stream(stream)

	assert [(tick, message.type) for tick, message in ordered] == [(10, "note_on"), (10, "note_off")]


def test_order_stream_simultaneous_group_shares_one_tick () -> None:

	"""Events straddling a rounding boundary within the tolerance land on the same tick."""

	stream = [
		(2.5000004, mido.Message("note_on", note=62, velocity=90)),
		(2.4999998, mido.Message("note_off", note=60)),
	]

	ordered = cyclesnap.materializer.order_stream(stream)

	assert [(tick, message.type) for tick, message in ordered] == [(2, "note_off"), (2, "note_on")]


def test_order_stream_keeps_insertion_order_within_class () -> None:

	"""Two note-ons at the same tick keep their relative order."""

	stream = [
		(5.0, mido.Message("note_on", note=64, velocity=90)),
		(5.0, mido.Message("note_on", note=60, velocity=90)),
	]

	assert [message.note for _, message in cyclesnap.materializer.order_stream(stream)] == [64, 60]


def test_output_ticks_never_decrease (four_segment_grid: cyclesnap.grid.MidiGrid) -> None:

	"""All delta times in the output are non-negative integers."""

	materializer = cyclesnap.materializer.Materializer(four_segment_grid)
	materializer.generate(23, 0.93)

	for track in materializer.timeline.tracks:
		assert all(isinstance(message.time, int) and message.time >= 0 for message in track)
		assert not any(math.isnan(message.time) for message in track)
