"""Event classification and ordering.

Every MIDI message is tagged with an ``EventClass``. The enum's integer
values define the order used to break ties between events that land on the
same tick: meta events first (so tempo and time signature precede the data
they describe), then note-offs before note-ons (so a re-struck note is not
cut by its own release), then controllers, and the end-of-track marker last.
"""

import dataclasses
import enum
import math
import typing

import mido


Message = typing.Union[mido.Message, mido.MetaMessage]


class EventClass (enum.IntEnum):

	"""Tie-break priority of a message at a shared tick (lower sorts first)."""

	META = 0
	NOTE_OFF = 1
	NOTE_ON = 2
	CONTROL_CHANGE = 3
	OTHER = 4
	END_OF_TRACK = 5


def classify (message: Message) -> EventClass:

	"""
	Return the ``EventClass`` of a mido message.

	A ``note_on`` with velocity 0 is a note-off by MIDI convention and is
	classified as such.
	"""

	if message.is_meta:
		if message.type == "end_of_track":
			return EventClass.END_OF_TRACK
		return EventClass.META

	if message.type == "note_off":
		return EventClass.NOTE_OFF

	if message.type == "note_on":
		return EventClass.NOTE_OFF if message.velocity == 0 else EventClass.NOTE_ON

	if message.type == "control_change":
		return EventClass.CONTROL_CHANGE

	return EventClass.OTHER


def is_end_of_track (message: Message) -> bool:

	"""True for the ``end_of_track`` meta message."""

	return message.is_meta and message.type == "end_of_track"


@dataclasses.dataclass
class TimedEvent:

	"""
	A message with a floating-point time in ticks and its source track.

	Depending on context ``time`` is an absolute position (merged source view,
	materialized streams) or a groove offset relative to a grid point (inside
	a bucket).
	"""

	time: float
	track: int
	message: Message

	@property
	def event_class (self) -> EventClass:
		return classify(self.message)


def round_half_up (value: float) -> int:

	"""Round to the nearest integer, halves away from zero."""

	if value < 0:
		return -int(math.floor(-value + 0.5))
	return int(math.floor(value + 0.5))
