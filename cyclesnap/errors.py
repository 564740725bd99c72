import dataclasses
import enum
import typing


class LoadError (enum.Enum):

	"""Reasons a source MIDI file could not be loaded."""

	NOT_FOUND = "not_found"
	CORRUPT_INPUT = "corrupt_input"
	EMPTY_INPUT = "empty_input"


class GenError (enum.Enum):

	"""Reasons a timeline could not be generated."""

	NO_SOURCE_LOADED = "no_source_loaded"
	EMPTY_MODEL = "empty_model"
	INVALID_PARAMETERS = "invalid_parameters"


class SaveError (enum.Enum):

	"""Reasons a generated timeline could not be written."""

	NOTHING_GENERATED = "nothing_generated"
	LOCKED_DESTINATION = "locked_destination"
	WRITE_FAILURE = "write_failure"


ErrorCode = typing.Union[LoadError, GenError, SaveError]


@dataclasses.dataclass(frozen=True)
class Result:

	"""
	Outcome of an engine operation.

	Expected failures (missing file, bad parameter, locked destination) are
	returned as a failed ``Result`` rather than raised. ``message`` is short
	and meant to be shown to the user verbatim.

	Example::

		result = engine.load_source("groove.mid")
		if not result:
			print(result.message)
	"""

	ok: bool
	error: typing.Optional[ErrorCode] = None
	message: str = ""

	def __bool__ (self) -> bool:
		return self.ok

	@classmethod
	def success (cls, message: str = "") -> "Result":

		"""Build a successful result."""

		return cls(ok=True, message=message)

	@classmethod
	def failure (cls, error: ErrorCode, message: str) -> "Result":

		"""Build a failed result carrying an error code and a readable reason."""

		return cls(ok=False, error=error, message=message)
