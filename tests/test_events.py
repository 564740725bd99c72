import mido
import pytest

import cyclesnap.events


@pytest.mark.parametrize("message, expected", [
	(mido.MetaMessage("set_tempo", tempo=500000), cyclesnap.events.EventClass.META),
	(mido.MetaMessage("end_of_track"), cyclesnap.events.EventClass.END_OF_TRACK),
	(mido.Message("note_off", note=60), cyclesnap.events.EventClass.NOTE_OFF),
	(mido.Message("note_on", note=60, velocity=0), cyclesnap.events.EventClass.NOTE_OFF),
	(mido.Message("note_on", note=60, velocity=1), cyclesnap.events.EventClass.NOTE_ON),
	(mido.Message("control_change", control=64, value=127), cyclesnap.events.EventClass.CONTROL_CHANGE),
	(mido.Message("program_change", program=5), cyclesnap.events.EventClass.OTHER),
	(mido.Message("pitchwheel", pitch=-200), cyclesnap.events.EventClass.OTHER),
])
def test_classify (message: cyclesnap.events.Message, expected: cyclesnap.events.EventClass) -> None:

	assert cyclesnap.events.classify(message) == expected


def test_event_class_order () -> None:

	"""Lower values sort first at a shared tick."""

	assert sorted(cyclesnap.events.EventClass) == [
		cyclesnap.events.EventClass.META,
		cyclesnap.events.EventClass.NOTE_OFF,
		cyclesnap.events.EventClass.NOTE_ON,
		cyclesnap.events.EventClass.CONTROL_CHANGE,
		cyclesnap.events.EventClass.OTHER,
		cyclesnap.events.EventClass.END_OF_TRACK,
	]


@pytest.mark.parametrize("value, expected", [(0.0, 0), (0.49, 0), (0.5, 1), (1.5, 2), (2.5, 3), (-0.5, -1), (-0.4, 0), (1919.9999, 1920)])
def test_round_half_up (value: float, expected: int) -> None:

	assert cyclesnap.events.round_half_up(value) == expected


def test_timed_event_class () -> None:

	event = cyclesnap.events.TimedEvent(time=12.0, track=1, message=mido.Message("note_on", note=40, velocity=0))

	assert event.event_class == cyclesnap.events.EventClass.NOTE_OFF
	assert cyclesnap.events.is_end_of_track(mido.MetaMessage("end_of_track"))
	assert not cyclesnap.events.is_end_of_track(event.message)
