"""
cyclesnap - geometric time-warping for MIDI loops.

cyclesnap takes a MIDI file, treats it as a repeating pattern, and replays
it with every elementary step stretched or squeezed by a factor that grows
geometrically. Loops speed up or slow down smoothly while the micro-timing
inside each segment (the groove) is scaled along with them.

How it works:

- **Grid segmentation.** Every distinct event start becomes a grid line.
  The gaps between grid lines are the pattern's segments, and each event is
  stored relative to its nearest grid line so its groove offset survives.
- **Geometric solver.** Of repetitions (``N``), per-loop scale (``s``),
  total duration ratio (``R``) and final-step scale (``E``), lock any
  pair and solve the others - by bisection, direct summation or an integer
  search. Every solve reports how far rounding to whole ticks drifts from
  the ideal result.
- **Materialization.** The pattern is replayed ``N`` steps long, buckets
  re-injected at each warped grid line and at loop boundaries, then sorted
  with note-offs ahead of note-ons at shared ticks and written back out as
  a standard MIDI file.

Minimal example:

    ```python
    import cyclesnap

    engine = cyclesnap.TransformEngine()
    engine.load_source("loop.mid")

    result = engine.run_solver(cyclesnap.Mode.TARGET_TOTAL_SCALE, 4, 0, 2.0, 0, constrain_to_integer_reps=True)
    engine.generate_output(result.repetitions, result.step_scale)
    engine.save_file("loop_slowing_down.mid")
    ```

Or from the command line: ``python -m cyclesnap loop.mid out.mid --reps 4 --total-scale 2``.

Package-level exports: ``TransformEngine``, ``Mode``, ``CalculationResult``, ``solve``.
"""

import cyclesnap.engine
import cyclesnap.solver


TransformEngine = cyclesnap.engine.TransformEngine
Mode = cyclesnap.solver.Mode
CalculationResult = cyclesnap.solver.CalculationResult
solve = cyclesnap.solver.solve
