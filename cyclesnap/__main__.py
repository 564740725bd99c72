"""Command line front end.

Usage::

    python -m cyclesnap loop.mid loop_warped.mid --mode target_total_scale --reps 4 --total-scale 2
    python -m cyclesnap loop.mid out.mid --mode fit_end_and_ratio --beat-end 0.5 --total-scale 1.5
    python -m cyclesnap loop.mid out.mid --config cyclesnap.yaml --debug-dump

Solver inputs come from the YAML config file (if any) and are overridden by
command line options. Which inputs a mode actually reads is listed by
``--help``.
"""

import argparse
import logging
import os
import sys
import typing

import yaml

import cyclesnap.engine
import cyclesnap.solver


logger = logging.getLogger(__name__)


DEFAULTS: typing.Dict[str, typing.Any] = {
	"mode": cyclesnap.solver.Mode.TARGET_TOTAL_SCALE.value,
	"repetitions": 4.0,
	"beat_ratio": 1.5,
	"total_scale": 2.0,
	"beat_end": 2.0,
	"integer_loops": True,
}


def load_config (config_path: str = 'cyclesnap.yaml') -> dict:

	"""
	Load configuration from a YAML file.
	"""

	if not os.path.exists(config_path):
		logger.warning(f"Config file {config_path} not found. Using defaults.")
		return {}

	with open(config_path, 'r') as f:
		return yaml.safe_load(f) or {}


def solver_settings (config: dict, args: argparse.Namespace) -> typing.Dict[str, typing.Any]:

	"""
	Merge defaults, the ``solver`` section of the config, and command line overrides.
	"""

	settings = dict(DEFAULTS)
	settings.update(config.get('solver', {}) or {})

	for key in DEFAULTS:
		value = getattr(args, key, None)
		if value is not None:
			settings[key] = value

	return settings


def _mode_help () -> str:
	return "; ".join(
		f"{mode.value}: {', '.join(inputs)}"
		for mode, inputs in cyclesnap.solver.LOCKED_INPUTS.items()
	)


def build_parser () -> argparse.ArgumentParser:

	"""Build the argument parser."""

	parser = argparse.ArgumentParser(
		prog="cyclesnap",
		description="Geometrically accelerate or decelerate the loops of a MIDI file.",
	)

	parser.add_argument("source", help="Source MIDI file")
	parser.add_argument("destination", help="Output MIDI file")
	parser.add_argument("--config", default=None, help="YAML config file")
	parser.add_argument(
		"--mode",
		choices=[mode.value for mode in cyclesnap.solver.Mode],
		default=None,
		help=f"Which inputs are locked ({_mode_help()})",
	)
	parser.add_argument("--reps", dest="repetitions", type=float, default=None, help="Repetitions, in loops (N)")
	parser.add_argument("--beat-ratio", dest="beat_ratio", type=float, default=None, help="Scale per loop (s)")
	parser.add_argument("--total-scale", dest="total_scale", type=float, default=None, help="Output / input duration (R)")
	parser.add_argument("--beat-end", dest="beat_end", type=float, default=None, help="Scale of the last step vs the first (E)")
	parser.add_argument(
		"--integer-loops",
		dest="integer_loops",
		action=argparse.BooleanOptionalAction,
		default=None,
		help="Only end on full loop boundaries",
	)
	parser.add_argument("--debug-dump", action="store_true", help="Also write a .txt debug dump next to the output")
	parser.add_argument("-v", "--verbose", action="store_true", help="Debug logging")

	return parser


def main (argv: typing.Optional[typing.List[str]] = None) -> int:

	"""
	Run load -> solve -> generate -> save. Returns a process exit code.
	"""

	args = build_parser().parse_args(argv)

	config = load_config(args.config) if args.config else {}

	level_name = 'DEBUG' if args.verbose else (config.get('logging', {}) or {}).get('level', 'INFO')
	logging.basicConfig(level=getattr(logging, str(level_name).upper(), logging.INFO))

	settings = solver_settings(config, args)

	try:
		mode = cyclesnap.solver.Mode(settings['mode'])
	except ValueError:
		logger.error(f"Unknown mode {settings['mode']!r}")
		return 1

	engine = cyclesnap.engine.TransformEngine()

	result = engine.load_source(args.source)
	if not result:
		logger.error(f"ERROR: {result.message}")
		return 1

	logger.info(f"Source: {engine.track_count} track(s), {engine.segment_count} segment(s), {engine.source_bpm:.2f} BPM")

	solved = engine.run_solver(
		mode,
		float(settings['repetitions']),
		float(settings['beat_ratio']),
		float(settings['total_scale']),
		float(settings['beat_end']),
		bool(settings['integer_loops']),
	)

	if not solved.success:
		logger.error(f"MATH ERROR: {solved.message}")
		return 1

	logger.info(
		f"SOLVED: N={solved.repetitions} ({solved.loops:.2f} Loops), s={solved.beat_ratio:.5f}, "
		f"R={solved.total_scale:.5f}, E={solved.beat_end:.5f}"
	)

	drift_message = f"DRIFT: {solved.error_ms:.2f}ms ({solved.drift}), realized R={solved.realized_scale:.5f} vs R={solved.total_scale:.5f}"
	if solved.drift == "tight":
		logger.info(drift_message)
	elif solved.drift == "loose":
		logger.warning(drift_message)
	else:
		logger.error(drift_message)

	result = engine.generate_output(solved.repetitions, solved.step_scale)
	if not result:
		logger.error(f"GEN FAIL: {result.message}")
		return 1

	result = engine.save_file(args.destination)
	if not result:
		logger.error(f"SAVE FAIL: {result.message}")
		return 1

	logger.info(f"SAVED: {os.path.basename(args.destination)}")

	if args.debug_dump:
		dump_path = os.path.splitext(args.destination)[0] + ".txt"
		result = engine.write_debug_dump(dump_path)
		if not result:
			logger.error(f"DUMP FAIL: {result.message}")
			return 1
		logger.info("DEBUG DUMP EXPORTED.")

	return 0


if __name__ == "__main__":
	sys.exit(main())
