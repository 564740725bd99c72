import enum
import logging
import os
import typing

import mido

import cyclesnap.errors
import cyclesnap.grid
import cyclesnap.materializer
import cyclesnap.solver


logger = logging.getLogger(__name__)


class EngineState (enum.Enum):

	"""Where the engine is in the load -> generate -> save workflow."""

	EMPTY = "empty"
	LOADED = "loaded"
	GENERATED = "generated"


class TransformEngine:

	"""
	Drives the load -> solve -> generate -> save workflow for one source file.

	The engine owns one ``MidiGrid`` and one ``Materializer``. Solving is
	pure and can be repeated freely; generating replaces the previous output
	wholesale. Every operation reports failure through its return value
	instead of raising.

	An engine instance is meant for a single owner; it holds no locks.

	Example::

		engine = TransformEngine()
		engine.load_source("loop.mid")
		result = engine.run_solver(Mode.TARGET_TOTAL_SCALE, 4, 0, 2.0, 0, constrain_to_integer_reps=True)
		engine.generate_output(result.repetitions, result.step_scale)
		engine.save_file("loop_warped.mid")
	"""

	def __init__ (self) -> None:

		"""Create an engine with nothing loaded."""

		self._grid = cyclesnap.grid.MidiGrid()
		self._materializer = cyclesnap.materializer.Materializer(self._grid)
		self.state = EngineState.EMPTY

	@property
	def is_loaded (self) -> bool:
		return self.state != EngineState.EMPTY

	@property
	def is_generated (self) -> bool:
		return self.state == EngineState.GENERATED

	@property
	def track_count (self) -> int:
		return self._grid.track_count

	@property
	def segment_count (self) -> int:
		return self._grid.segment_count

	@property
	def source_bpm (self) -> float:
		return self._grid.bpm

	@property
	def grid (self) -> cyclesnap.grid.MidiGrid:
		return self._grid

	@property
	def generated (self) -> typing.Optional[mido.MidiFile]:
		return self._materializer.timeline

	def clear (self) -> None:

		"""Eject the source and any generated output."""

		self._grid.clear()
		self._materializer.clear()
		self.state = EngineState.EMPTY
		logger.info("Engine cleared")

	def load_source (self, path: str) -> cyclesnap.errors.Result:

		"""
		Load and segment a MIDI file, discarding any previous source and output.
		"""

		logger.info(f"Loading {path}")

		self._materializer.clear()
		result = self._grid.load(path)
		self.state = EngineState.LOADED if result.ok else EngineState.EMPTY

		if not result.ok:
			logger.warning(f"Load failed: {result.message}")

		return result

	def load_midi (self, midi: mido.MidiFile) -> cyclesnap.errors.Result:

		"""Load an in-memory ``mido.MidiFile`` as the source."""

		self._materializer.clear()
		result = self._grid.load_midi(midi)
		self.state = EngineState.LOADED if result.ok else EngineState.EMPTY
		return result

	def run_solver (
		self,
		mode: cyclesnap.solver.Mode,
		target_reps: float,
		beat_ratio: float,
		total_scale: float,
		beat_end: float,
		constrain_to_integer_reps: bool = False,
	) -> cyclesnap.solver.CalculationResult:

		"""
		Solve warp parameters against the loaded source's segments and tempo.

		Does not change the engine state.
		"""

		if not self.is_loaded:
			return cyclesnap.solver.CalculationResult(success=False, message="No source MIDI loaded.", mode=mode)

		return cyclesnap.solver.solve(
			mode,
			target_reps,
			beat_ratio,
			total_scale,
			beat_end,
			self._grid.deltas,
			self._grid.total_duration,
			self._grid.bpm,
			self._grid.ticks_per_beat,
			constrain_to_integer_reps,
		)

	def generate_output (self, total_steps: int, step_scale: float) -> cyclesnap.errors.Result:

		"""
		Generate the warped timeline; see ``Materializer.generate``.

		A failed generation leaves the engine in the loaded state with no output.
		"""

		result = self._materializer.generate(total_steps, step_scale)

		if result.ok:
			self.state = EngineState.GENERATED
		else:
			self._materializer.clear()
			if self.is_loaded:
				self.state = EngineState.LOADED
			logger.warning(f"Generation failed: {result.message}")

		return result

	def save_file (self, path: str) -> cyclesnap.errors.Result:

		"""
		Write the generated timeline to ``path``, replacing any existing file.

		The file is type 1 when it has more than one track, otherwise type 0.
		"""

		midi = self._materializer.timeline

		if self.state != EngineState.GENERATED or midi is None:
			return cyclesnap.errors.Result.failure(cyclesnap.errors.SaveError.NOTHING_GENERATED, "Nothing to save.")

		if os.path.exists(path):
			try:
				os.remove(path)
			except OSError as e:
				logger.warning(f"Could not replace {path}: {e}")
				return cyclesnap.errors.Result.failure(cyclesnap.errors.SaveError.LOCKED_DESTINATION, "File locked.")

		midi.type = 1 if len(midi.tracks) > 1 else 0

		try:
			midi.save(path)
		except OSError as e:
			logger.warning(f"Failed to write {path}: {e}")
			return cyclesnap.errors.Result.failure(cyclesnap.errors.SaveError.WRITE_FAILURE, "Write error.")

		logger.info(f"Saved {path}")
		return cyclesnap.errors.Result.success(f"Saved {os.path.basename(path)}")

	def debug_dump (self) -> str:

		"""
		Describe the source and generated files: resolution and per-track event counts.
		"""

		text = "--- DEBUG ---\n"

		if self.is_loaded and self._grid.source is not None:
			text += _describe_midi(self._grid.source, "SOURCE")

		if self.is_generated and self._materializer.timeline is not None:
			text += _describe_midi(self._materializer.timeline, "OUTPUT")

		return text

	def write_debug_dump (self, path: str) -> cyclesnap.errors.Result:

		"""Write ``debug_dump()`` to a text file."""

		try:
			with open(path, "w") as f:
				f.write(self.debug_dump())
		except OSError as e:
			logger.warning(f"Failed to write debug dump {path}: {e}")
			return cyclesnap.errors.Result.failure(cyclesnap.errors.SaveError.WRITE_FAILURE, "Write error.")

		return cyclesnap.errors.Result.success("Debug dump exported.")


def _describe_midi (midi: mido.MidiFile, title: str) -> str:

	lines = [f"\n[{title}]", f"PPQ: {midi.ticks_per_beat}"]

	for index, track in enumerate(midi.tracks):
		lines.append(f"Trk{index}: {len(track)} evs")

	return "\n".join(lines) + "\n"
