"""Geometric time-warp solver.

The output timeline is the source pattern played for ``N`` elementary steps,
where step ``k`` uses segment ``k % M`` stretched by ``s_step ** k``. The
ratio of output to source duration is therefore::

	R(N, s_step) = (1 / source) * sum(delta[k % M] * s_step ** k for k in range(N))

Four user-facing quantities describe a warp:

- ``N`` - repetitions, expressed to the user in loops (``N / M``).
- ``s`` - beat ratio, the scale applied over one full loop (``s_step ** M``).
- ``R`` - total scale, output duration over source duration.
- ``E`` - beat end, the scale of the last step relative to the first
  (``s_step ** (N - 1)``).

Each ``Mode`` locks two of them and solves for the rest. ``solve()`` is a
pure function: it allocates no shared state and never raises for bad input,
reporting problems through ``CalculationResult.success`` and ``message``.

The brute-force searches over ``N`` stop early once the ratio has passed the
target and the error starts growing. That relies on ``R`` being increasing
in ``N`` for a fixed ``s_step``, which holds for any positive deltas. In
``FIT_END_AND_RATIO`` the step scale changes with ``N``, so the same exit is a
heuristic there; unusual delta distributions could in principle stop the
search at a local minimum.
"""

import dataclasses
import enum
import logging
import math
import typing

import cyclesnap.constants
import cyclesnap.events


logger = logging.getLogger(__name__)


class Mode (enum.Enum):

	"""Which two quantities are locked; the rest are solved."""

	TARGET_TOTAL_SCALE = "target_total_scale"   # fix N, R -> solve s
	FIXED_BEAT_RATIO = "fixed_beat_ratio"       # fix N, s -> solve R
	MATCH_BEAT_END = "match_beat_end"           # fix N, E -> solve s, R
	FIT_TO_CURVE = "fit_to_curve"               # fix s, R -> solve N
	FIT_END_AND_RATIO = "fit_end_and_ratio"     # fix E, R -> solve N, s


# Named inputs each mode reads; the others are ignored.
LOCKED_INPUTS: typing.Dict[Mode, typing.Tuple[str, ...]] = {
	Mode.TARGET_TOTAL_SCALE: ("repetitions", "total_scale"),
	Mode.FIXED_BEAT_RATIO: ("repetitions", "beat_ratio"),
	Mode.MATCH_BEAT_END: ("repetitions", "beat_end"),
	Mode.FIT_TO_CURVE: ("beat_ratio", "total_scale"),
	Mode.FIT_END_AND_RATIO: ("beat_end", "total_scale"),
}

_FIT_MODES = (Mode.FIT_TO_CURVE, Mode.FIT_END_AND_RATIO)


@dataclasses.dataclass(frozen=True)
class CalculationResult:

	"""
	Solved warp parameters plus quantization diagnostics.

	``realized_scale`` is the ratio actually achieved once every stretched
	step is rounded to whole ticks. ``error_ticks`` is the difference between
	that rounded duration and the real-valued duration of the solved warp,
	and ``error_ms`` is the same at the source tempo.
	"""

	success: bool = False
	message: str = ""
	mode: typing.Optional[Mode] = None

	beat_ratio: float = 1.0
	total_scale: float = 0.0
	beat_end: float = 1.0

	repetitions: int = 0
	step_scale: float = 1.0

	realized_scale: float = 0.0
	error_ticks: float = 0.0
	error_ms: float = 0.0

	segment_count: int = 1

	@property
	def loops (self) -> float:

		"""Repetitions expressed as full passes through the pattern."""

		return self.repetitions / max(1, self.segment_count)

	@property
	def drift (self) -> str:
		return drift_rating(self.error_ms)


def drift_rating (error_ms: float) -> str:

	"""
	Classify a quantization error: ``tight`` under 10 ms, ``loose`` under 30 ms, else ``error``.
	"""

	if error_ms < cyclesnap.constants.DRIFT_TIGHT_MS:
		return "tight"
	if error_ms < cyclesnap.constants.DRIFT_LOOSE_MS:
		return "loose"
	return "error"


def saturating_power (base: float, exponent: float) -> float:

	"""``base ** exponent`` that saturates to infinity instead of raising on overflow."""

	try:
		return math.pow(base, exponent)
	except OverflowError:
		return math.inf


def duration_ratio (deltas: typing.Sequence[float], n_steps: int, step_scale: float, source_duration: float) -> float:

	"""
	Return ``R``: the stretched duration of ``n_steps`` steps over the source duration.

	Returns 0.0 for an empty pattern or a non-positive source duration.
	"""

	if not deltas or source_duration <= cyclesnap.constants.MIN_SOURCE_TICKS:
		return 0.0

	segment_count = len(deltas)

	# Unscaled: whole loops plus the leading part of the pattern.
	if abs(step_scale - 1.0) < cyclesnap.constants.UNITY_SCALE_TOLERANCE:
		full_loops, remainder = divmod(n_steps, segment_count)
		return (full_loops * sum(deltas) + sum(deltas[:remainder])) / source_duration

	total = 0.0
	for k in range(n_steps):
		total += deltas[k % segment_count] * saturating_power(step_scale, k)

	return total / source_duration


def solve_step_scale (deltas: typing.Sequence[float], n_steps: int, target_ratio: float, source_duration: float) -> float:

	"""
	Bisect for the step scale whose ratio over ``n_steps`` equals ``target_ratio``.

	A target within 0.001 of the unscaled ratio returns exactly 1.0.
	"""

	linear_ratio = duration_ratio(deltas, n_steps, 1.0, source_duration)
	if abs(target_ratio - linear_ratio) < cyclesnap.constants.LINEAR_SNAP_TOLERANCE:
		return 1.0

	low = cyclesnap.constants.BISECTION_LOW
	high = cyclesnap.constants.BISECTION_HIGH

	expansions = 0
	while duration_ratio(deltas, n_steps, high, source_duration) < target_ratio and expansions < cyclesnap.constants.BISECTION_MAX_EXPANSIONS:
		high *= 2.0
		expansions += 1

	for _ in range(cyclesnap.constants.BISECTION_ITERATIONS):

		mid = low + (high - low) * 0.5
		ratio = duration_ratio(deltas, n_steps, mid, source_duration)

		if abs(ratio - target_ratio) < cyclesnap.constants.BISECTION_TOLERANCE:
			return mid

		if ratio < target_ratio:
			low = mid
		else:
			high = mid

	return low + (high - low) * 0.5


def _search_limit (segment_count: int) -> int:
	return max(cyclesnap.constants.MIN_SEARCH_LIMIT, segment_count * cyclesnap.constants.SEARCH_LIMIT_PER_SEGMENT)


def find_best_fit_repetitions (deltas: typing.Sequence[float], step_scale: float, target_ratio: float, source_duration: float, stride: int) -> int:

	"""
	Search ``N = stride, 2 * stride, ...`` for the ratio closest to ``target_ratio``.

	The stretched total is carried from one candidate to the next, so each
	candidate only adds ``stride`` new terms. Stops once the ratio overshoots
	and the error grows, once the series has converged (new terms no longer
	change the total), or at the search limit.
	"""

	if not deltas or source_duration <= cyclesnap.constants.MIN_SOURCE_TICKS:
		return stride

	segment_count = len(deltas)

	best_n = stride
	min_diff = math.inf

	total = 0.0
	k = 0

	for n in range(stride, _search_limit(segment_count) + 1, stride):

		previous_total = total

		while k < n:
			total += deltas[k % segment_count] * saturating_power(step_scale, k)
			k += 1

		ratio = total / source_duration
		diff = abs(ratio - target_ratio)

		if diff < min_diff:
			min_diff = diff
			best_n = n

		if ratio > target_ratio and diff > min_diff:
			break

		# Converged: every later candidate has this same ratio.
		if n > stride and total == previous_total:
			break

	return best_n


def find_best_fit_repetitions_with_fixed_end (deltas: typing.Sequence[float], beat_end: float, target_ratio: float, source_duration: float, stride: int) -> int:

	"""
	Search ``N`` when the beat end is locked, re-deriving the step scale for every candidate.

	With ``beat_end`` at 1.0 the warp is linear and ``N`` follows directly
	from ``target_ratio * M``, snapped to the stride.
	"""

	segment_count = len(deltas)

	if abs(beat_end - 1.0) < cyclesnap.constants.LINEAR_SNAP_TOLERANCE:
		n = cyclesnap.events.round_half_up(target_ratio * segment_count)
		if n % stride != 0:
			n = ((n + stride // 2) // stride) * stride
		return max(n, stride)

	# A curve needs at least two points.
	start = max(stride, 2)
	best_n = start
	min_diff = math.inf

	for n in range(start, _search_limit(segment_count) + 1, stride):

		step_scale = saturating_power(beat_end, 1.0 / (n - 1))
		ratio = duration_ratio(deltas, n, step_scale, source_duration)
		diff = abs(ratio - target_ratio)

		if diff < min_diff:
			min_diff = diff
			best_n = n

		if ratio > target_ratio and diff > min_diff:
			break

	return best_n


def _fixed_repetitions (target_reps: float, segment_count: int, constrain_to_integer_reps: bool) -> int:

	"""Convert a loop count into whole steps, optionally snapped to full loops."""

	repetitions = cyclesnap.events.round_half_up(target_reps * segment_count)

	if constrain_to_integer_reps:
		repetitions = ((repetitions + segment_count // 2) // segment_count) * segment_count
		repetitions = max(repetitions, segment_count)

	return max(repetitions, 1)


def _is_positive (value: float) -> bool:
	return math.isfinite(value) and value > 0


def _failure (mode: Mode, message: str, segment_count: int) -> CalculationResult:
	logger.warning(f"Solver ({mode.value}) rejected input: {message}")
	return CalculationResult(success=False, message=message, mode=mode, segment_count=segment_count)


def solve (
	mode: Mode,
	target_reps: float,
	beat_ratio: float,
	total_scale: float,
	beat_end: float,
	deltas: typing.Sequence[float],
	source_duration: float,
	bpm: float,
	ticks_per_beat: int,
	constrain_to_integer_reps: bool = False,
) -> CalculationResult:

	"""
	Solve the warp parameters for ``mode``.

	Parameters:
		mode: Which quantities are locked.
		target_reps: Repetitions in loops (fixed-N modes only).
		beat_ratio: Per-loop scale ``s`` (``FIXED_BEAT_RATIO``, ``FIT_TO_CURVE``).
		total_scale: Total ratio ``R`` (``TARGET_TOTAL_SCALE`` and the fit modes).
		beat_end: Final-step scale ``E`` (``MATCH_BEAT_END``, ``FIT_END_AND_RATIO``).
		deltas: Segment durations in ticks. An empty list is treated as one
			960-tick segment.
		source_duration: Total source duration in ticks.
		bpm: Tempo used to express the quantization error in milliseconds.
		ticks_per_beat: File resolution (960 if not positive).
		constrain_to_integer_reps: Only allow ``N`` on full-loop boundaries
			(multiples of the segment count).

	Example::

		result = solve(Mode.TARGET_TOTAL_SCALE, 4, 0, 2.0, 0, [480.0] * 4, 1920.0, 120, 960)
		result.repetitions  # 16
	"""

	work_deltas = list(deltas)
	work_duration = source_duration

	if not work_deltas or work_duration <= 0:
		work_deltas = [cyclesnap.constants.FALLBACK_SEGMENT_TICKS]
		work_duration = cyclesnap.constants.FALLBACK_SEGMENT_TICKS

	segment_count = len(work_deltas)
	stride = segment_count if constrain_to_integer_reps else 1

	def loop_to_step (loop_scale: float) -> float:
		return saturating_power(loop_scale, 1.0 / segment_count)

	def step_to_loop (step_scale: float) -> float:
		return saturating_power(step_scale, segment_count)

	if mode not in _FIT_MODES and not _is_positive(target_reps):
		return _failure(mode, "Invalid Repetitions", segment_count)

	solved_end: typing.Optional[float] = None

	if mode == Mode.TARGET_TOTAL_SCALE:

		if not _is_positive(total_scale):
			return _failure(mode, "Total Scale > 0 required", segment_count)

		repetitions = _fixed_repetitions(target_reps, segment_count, constrain_to_integer_reps)
		ratio = total_scale
		step_scale = solve_step_scale(work_deltas, repetitions, total_scale, work_duration)
		loop_scale = step_to_loop(step_scale)
		message = "Solved Beat Ratio"

	elif mode == Mode.FIXED_BEAT_RATIO:

		if not _is_positive(beat_ratio):
			return _failure(mode, "Beat Ratio > 0 required", segment_count)

		repetitions = _fixed_repetitions(target_reps, segment_count, constrain_to_integer_reps)
		loop_scale = beat_ratio
		step_scale = loop_to_step(beat_ratio)
		ratio = duration_ratio(work_deltas, repetitions, step_scale, work_duration)
		message = "Calculated Total Scale"

	elif mode == Mode.MATCH_BEAT_END:

		if not _is_positive(beat_end):
			return _failure(mode, "Beat End > 0 required", segment_count)

		repetitions = _fixed_repetitions(target_reps, segment_count, constrain_to_integer_reps)
		step_scale = saturating_power(beat_end, 1.0 / (repetitions - 1)) if repetitions > 1 else 1.0
		loop_scale = step_to_loop(step_scale)
		ratio = duration_ratio(work_deltas, repetitions, step_scale, work_duration)
		message = "Solved Ratio from End"

	elif mode == Mode.FIT_TO_CURVE:

		if not _is_positive(beat_ratio) or not _is_positive(total_scale):
			return _failure(mode, "Invalid Input", segment_count)

		loop_scale = beat_ratio
		step_scale = loop_to_step(beat_ratio)
		ratio = total_scale
		repetitions = find_best_fit_repetitions(work_deltas, step_scale, total_scale, work_duration, stride)
		message = "Solved Repetitions (Curve)"

	elif mode == Mode.FIT_END_AND_RATIO:

		if not _is_positive(beat_end) or not _is_positive(total_scale):
			return _failure(mode, "Invalid Input", segment_count)

		ratio = total_scale
		repetitions = find_best_fit_repetitions_with_fixed_end(work_deltas, beat_end, total_scale, work_duration, stride)
		step_scale = saturating_power(beat_end, 1.0 / (repetitions - 1)) if repetitions > 1 else 1.0
		loop_scale = step_to_loop(step_scale)
		solved_end = beat_end
		message = "Solved Repetitions (End+Ratio)"

	else:
		return _failure(mode, f"Unknown mode {mode!r}", segment_count)

	if solved_end is None:
		solved_end = saturating_power(step_scale, repetitions - 1) if repetitions > 0 else 1.0

	realized_scale, error_ticks = _quantization_drift(work_deltas, repetitions, step_scale, work_duration)

	safe_ppq = ticks_per_beat if ticks_per_beat > 0 else cyclesnap.constants.DEFAULT_TICKS_PER_BEAT
	safe_bpm = bpm if _is_positive(bpm) else cyclesnap.constants.DEFAULT_BPM
	error_ms = error_ticks * 60000.0 / (safe_bpm * safe_ppq)

	result = CalculationResult(
		success=True,
		message=message,
		mode=mode,
		beat_ratio=loop_scale,
		total_scale=ratio,
		beat_end=solved_end,
		repetitions=repetitions,
		step_scale=step_scale,
		realized_scale=realized_scale,
		error_ticks=error_ticks,
		error_ms=error_ms,
		segment_count=segment_count,
	)

	logger.info(
		f"{message}: N={repetitions} ({result.loops:.2f} loops), s={loop_scale:.5f}, "
		f"R={ratio:.5f}, E={solved_end:.5f}, drift {error_ms:.2f} ms"
	)

	return result


def _quantization_drift (deltas: typing.Sequence[float], repetitions: int, step_scale: float, source_duration: float) -> typing.Tuple[float, float]:

	"""
	Compare the real-valued warp duration with the duration after rounding each step to a tick.

	Returns ``(realized_scale, error_ticks)``. Each step rounds by at most
	half a tick, so the error never exceeds ``0.5 * repetitions``.
	"""

	segment_count = len(deltas)
	ideal_ticks = 0.0
	quantized_ticks = 0

	for k in range(repetitions):

		exact = deltas[k % segment_count] * saturating_power(step_scale, k)

		if not math.isfinite(exact):
			return math.inf, math.inf

		ideal_ticks += exact
		quantized_ticks += cyclesnap.events.round_half_up(exact)

	return quantized_ticks / source_duration, abs(quantized_ticks - ideal_ticks)
