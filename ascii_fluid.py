#!/usr/bin/env python3
"""
  ~  A S C I I   F L U I D  ~
  Metaballs drifting through a terminal, drawn in plain text.

  A handful of blobs wander along slow Lissajous paths, breathing in and out.
  Every frame the whole grid is re-evaluated as a metaball field and each
  cell picks a glyph from a sparse-to-dense ramp, so the blobs melt into one
  another when they pass close and pull apart again afterwards.

  Controls:
    q         quit
    r         reseed the blobs

  Usage:
    python3 ascii_fluid.py                       # 160x56, 18 blobs
    python3 ascii_fluid.py --seed 7 --fps 30     # reproducible run
    python3 ascii_fluid.py --log fluid_stats.csv # per-frame telemetry
"""

from __future__ import annotations

import argparse
import curses
import random
import time
from collections import deque
from dataclasses import dataclass
from pathlib import Path
from typing import IO, Callable, ClassVar, Protocol, Sequence

import numpy as np
from numpy.typing import NDArray

# ── Grid ────────────────────────────────────────────────────────────────
WIDTH: int = 160
HEIGHT: int = 56
BLOB_COUNT: int = 18

# Ordered from empty to solid
GLYPH_RAMP: str = "       .,-~:;=!*#$@"

# ── Motion ──────────────────────────────────────────────────────────────
TIME_STEP: float = 0.005   # clock units per frame, not scaled by wall time
ORBIT_X: float = 0.35      # primary swing as a fraction of the grid
ORBIT_Y: float = 0.35
WOBBLE_X: float = 15.0     # secondary swing, in cells
WOBBLE_Y: float = 8.0

SPEED_MIN: float = 0.2
SPEED_SPAN: float = 0.4
OFFSET_SPAN: float = 100.0

# ── Breathing radius ────────────────────────────────────────────────────
BASE_RADIUS: float = 9.0
RADIUS_SWING: float = 3.0
BREATH_RATE: float = 3.0

# ── Field shape ─────────────────────────────────────────────────────────
ASPECT: float = 2.2        # character cells are taller than wide
KERNEL_GAIN: float = 2.5
EPSILON: float = 8.0
THRESHOLD: float = 0.95    # higher = blobs separate sooner
FALLOFF: float = 0.7       # lower = softer edge band

# ── Status bar ──────────────────────────────────────────────────────────
TITLES: list[str] = ["COMPUTER ENGINEER", "DESIGNER", "BUILDER", "WRITER"]
TITLE_INTERVAL: float = 1.0

DEFAULT_FPS: float = 60.0

STOPPED = "stopped"
RUNNING = "running"


# ═══════════════════════════════════════════════════════════════════════
#  Configuration
# ═══════════════════════════════════════════════════════════════════════

@dataclass(frozen=True)
class FieldConfig:
    """Everything that shapes the animation, fixed for the animator's life."""

    width: int = WIDTH
    height: int = HEIGHT
    blob_count: int = BLOB_COUNT
    ramp: str = GLYPH_RAMP
    time_step: float = TIME_STEP
    orbit_x: float = ORBIT_X
    orbit_y: float = ORBIT_Y
    wobble_x: float = WOBBLE_X
    wobble_y: float = WOBBLE_Y
    base_radius: float = BASE_RADIUS
    radius_swing: float = RADIUS_SWING
    breath_rate: float = BREATH_RATE
    aspect: float = ASPECT
    kernel_gain: float = KERNEL_GAIN
    epsilon: float = EPSILON
    threshold: float = THRESHOLD
    falloff: float = FALLOFF
    speed_min: float = SPEED_MIN
    speed_span: float = SPEED_SPAN
    offset_span: float = OFFSET_SPAN

    def __post_init__(self) -> None:
        if self.width < 1 or self.height < 1:
            raise ValueError(f"grid must be at least 1x1, got {self.width}x{self.height}")
        if self.blob_count < 0:
            raise ValueError(f"blob_count must be >= 0, got {self.blob_count}")
        if len(self.ramp) < 2:
            raise ValueError("glyph ramp needs at least two characters")
        if self.time_step <= 0:
            raise ValueError(f"time_step must be positive, got {self.time_step}")
        if self.epsilon <= 0:
            raise ValueError(f"epsilon must be positive, got {self.epsilon}")


# ═══════════════════════════════════════════════════════════════════════
#  Blobs
# ═══════════════════════════════════════════════════════════════════════

@dataclass(frozen=True)
class Blob:
    """Trajectory parameters of one blob. Position is derived, never stored."""

    speed: float
    offset: float


def seed_blobs(config: FieldConfig, rng: random.Random) -> list[Blob]:
    return [
        Blob(
            speed=config.speed_min + rng.random() * config.speed_span,
            offset=rng.random() * config.offset_span,
        )
        for _ in range(config.blob_count)
    ]


def blob_positions(
    speeds: NDArray[np.float64],
    offsets: NDArray[np.float64],
    t: float,
    config: FieldConfig,
) -> tuple[NDArray[np.float64], NDArray[np.float64], NDArray[np.float64]]:
    """Closed-form (x, y, radius) of every blob at clock ``t``.

    Each blob depends only on its own speed and offset, so the whole set is
    evaluated as one vector expression.
    """
    w, h = config.width, config.height
    x = (
        w / 2
        + np.sin(t * speeds + offsets) * (w * config.orbit_x)
        + np.cos(t * 0.2 * speeds) * config.wobble_x
    )
    y = (
        h / 2
        + np.cos(t * speeds * 0.8 + offsets) * (h * config.orbit_y)
        + np.sin(t * 0.3 * speeds) * config.wobble_y
    )
    radius = config.base_radius + np.sin(t * config.breath_rate + offsets) * config.radius_swing
    return x, y, radius


# ═══════════════════════════════════════════════════════════════════════
#  Field
# ═══════════════════════════════════════════════════════════════════════

def field_sum(
    xs: NDArray[np.float64],
    ys: NDArray[np.float64],
    bx: NDArray[np.float64],
    by: NDArray[np.float64],
    br: NDArray[np.float64],
    config: FieldConfig,
) -> NDArray[np.float64]:
    """Metaball field, shape (len(ys), len(xs)).

    Each blob adds ``r^2 * K / (dx^2 + (dy * aspect)^2 + eps)``.
    """
    # (blob, row, col) via broadcasting: dx is (n, 1, w), dy is (n, h, 1)
    dx = xs[np.newaxis, np.newaxis, :] - bx[:, np.newaxis, np.newaxis]
    dy = (ys[np.newaxis, :, np.newaxis] - by[:, np.newaxis, np.newaxis]) * config.aspect
    strength = (br * br * config.kernel_gain)[:, np.newaxis, np.newaxis]
    contrib = strength / (dx * dx + dy * dy + config.epsilon)
    # An empty blob axis still sums to a zero (h, w) field
    return contrib.sum(axis=0)


def glyph_indices(field_values: NDArray[np.float64], config: FieldConfig) -> NDArray[np.intp]:
    """Map field intensity to ramp indices. Non-decreasing in the field."""
    norm = np.clip((field_values - config.threshold) * config.falloff, 0.0, 1.0)
    return np.floor(norm * (len(config.ramp) - 1)).astype(np.intp)


def serialize(indices: NDArray[np.intp], ramp: str) -> str:
    """Rows of glyphs joined by newlines (no trailing newline)."""
    lut = np.array(list(ramp))
    return "\n".join("".join(row) for row in lut[indices].tolist())


# ═══════════════════════════════════════════════════════════════════════
#  Frame scheduling
# ═══════════════════════════════════════════════════════════════════════

FrameCallback = Callable[[float], None]


@dataclass
class _Interval:
    period: float
    due: float
    callback: Callable[[], None]


class FrameScheduler:
    """Cooperative "call me before the next frame" hook.

    The host loop calls ``run_frame()`` once per presented frame. Frame
    callbacks are one-shot and must re-request themselves; intervals repeat
    until cleared. Everything runs on the caller's thread.
    """

    def __init__(self, clock: Callable[[], float] = time.monotonic) -> None:
        self._clock = clock
        self._next_token: int = 1
        self._frames: dict[int, FrameCallback] = {}
        self._intervals: dict[int, _Interval] = {}
        self.frame_count: int = 0

    def _token(self) -> int:
        token = self._next_token
        self._next_token += 1
        return token

    def request_frame(self, callback: FrameCallback) -> int:
        token = self._token()
        self._frames[token] = callback
        return token

    def cancel_frame(self, token: int) -> None:
        self._frames.pop(token, None)

    def set_interval(self, callback: Callable[[], None], seconds: float) -> int:
        if seconds <= 0:
            raise ValueError(f"interval must be positive, got {seconds}")
        token = self._token()
        self._intervals[token] = _Interval(seconds, self._clock() + seconds, callback)
        return token

    def clear_interval(self, token: int) -> None:
        self._intervals.pop(token, None)

    @property
    def pending(self) -> int:
        return len(self._frames)

    def run_frame(self) -> int:
        """Fire due intervals, then this frame's callbacks. Returns frame callbacks run."""
        now = self._clock()

        for token in list(self._intervals):
            iv = self._intervals.get(token)
            if iv is None or now < iv.due:
                continue
            iv.due = now + iv.period
            iv.callback()

        # Snapshot: anything requested from inside a callback waits a frame
        ran = 0
        for token in list(self._frames):
            callback = self._frames.pop(token, None)
            if callback is None:
                continue  # cancelled earlier in this frame
            callback(now)
            ran += 1

        self.frame_count += 1
        return ran


# ═══════════════════════════════════════════════════════════════════════
#  Render targets
# ═══════════════════════════════════════════════════════════════════════

class RenderTarget(Protocol):
    def write(self, text: str) -> None: ...


class TextSurface:
    """In-memory render target holding the most recent frames."""

    def __init__(self, keep: int = 1) -> None:
        self.frames: deque[str] = deque(maxlen=keep)
        self.writes: int = 0

    def write(self, text: str) -> None:
        self.frames.append(text)
        self.writes += 1

    @property
    def frame(self) -> str:
        return self.frames[-1] if self.frames else ""


class CursesSurface:
    """Draws frames onto a curses window, clipped to its size.

    The bottom ``reserved`` rows are left for the status bar.
    """

    def __init__(self, stdscr: curses.window, reserved: int = 1, attr: int = 0) -> None:
        self._stdscr = stdscr
        self._reserved = reserved
        self._attr = attr
        self.writes: int = 0

    def write(self, text: str) -> None:
        max_y, max_x = self._stdscr.getmaxyx()
        rows = max_y - self._reserved
        for y, line in enumerate(text.split("\n")):
            if y >= rows:
                break
            try:
                self._stdscr.addstr(y, 0, line[:max_x], self._attr)
            except curses.error:
                pass  # writing the bottom-right cell moves the cursor off-screen
        self.writes += 1


# ═══════════════════════════════════════════════════════════════════════
#  The animator
# ═══════════════════════════════════════════════════════════════════════

class FieldAnimator:
    """
    Owns the clock, the blobs and the pending frame token.

    ``start()`` seeds fresh blobs and schedules the first frame; every frame
    advances the clock by a fixed step, re-evaluates the whole grid and
    writes it to the surface in one piece. ``stop()`` cancels the pending
    frame, so nothing is written after it returns.
    """

    def __init__(
        self,
        surface: RenderTarget,
        scheduler: FrameScheduler,
        config: FieldConfig | None = None,
        rng: random.Random | None = None,
    ) -> None:
        self.config: FieldConfig = config if config is not None else FieldConfig()
        self.surface = surface
        self.scheduler = scheduler
        self._rng: random.Random = rng if rng is not None else random.Random()

        self.state: str = STOPPED
        self.time: float = 0.0
        self.ticks: int = 0
        self.blobs: list[Blob] = []
        self._token: int | None = None

        cfg = self.config
        self._xs: NDArray[np.float64] = np.arange(cfg.width, dtype=np.float64)
        self._ys: NDArray[np.float64] = np.arange(cfg.height, dtype=np.float64)
        self._speeds: NDArray[np.float64] = np.zeros(0, dtype=np.float64)
        self._offsets: NDArray[np.float64] = np.zeros(0, dtype=np.float64)

        # Latest tick, readable by the status bar and the bench
        self.blob_x: NDArray[np.float64] = np.zeros(0, dtype=np.float64)
        self.blob_y: NDArray[np.float64] = np.zeros(0, dtype=np.float64)
        self.blob_r: NDArray[np.float64] = np.zeros(0, dtype=np.float64)
        self.field: NDArray[np.float64] = np.zeros((cfg.height, cfg.width), dtype=np.float64)
        self.glyphs: NDArray[np.intp] = np.zeros((cfg.height, cfg.width), dtype=np.intp)

    # ── Lifecycle ───────────────────────────────────────────────────

    @property
    def running(self) -> bool:
        return self.state == RUNNING

    def start(self) -> None:
        if self.running:
            return
        self._seed()
        self.state = RUNNING
        self._token = self.scheduler.request_frame(self._on_frame)

    def stop(self) -> None:
        if self._token is not None:
            self.scheduler.cancel_frame(self._token)
            self._token = None
        self.state = STOPPED

    def _seed(self) -> None:
        cfg = self.config
        self.time = 0.0
        self.ticks = 0
        self.blobs = seed_blobs(cfg, self._rng)
        self._speeds = np.array([b.speed for b in self.blobs], dtype=np.float64)
        self._offsets = np.array([b.offset for b in self.blobs], dtype=np.float64)
        # Start mostly centered
        n = len(self.blobs)
        self.blob_x = np.full(n, cfg.width / 2)
        self.blob_y = np.full(n, cfg.height / 2)
        self.blob_r = np.full(n, cfg.base_radius)

    # ── Ticking ─────────────────────────────────────────────────────

    def _on_frame(self, _now: float) -> None:
        self._token = None
        frame = self.step()
        self.surface.write(frame)
        # The surface may have stopped us mid-frame
        if self.running:
            self._token = self.scheduler.request_frame(self._on_frame)

    def step(self) -> str:
        """Advance one tick and return the serialized frame."""
        cfg = self.config
        self.time += cfg.time_step
        self.ticks += 1

        self.blob_x, self.blob_y, self.blob_r = blob_positions(
            self._speeds, self._offsets, self.time, cfg
        )
        self.field = field_sum(self._xs, self._ys, self.blob_x, self.blob_y, self.blob_r, cfg)
        self.glyphs = glyph_indices(self.field, cfg)
        return serialize(self.glyphs, cfg.ramp)

    # ── Telemetry ───────────────────────────────────────────────────

    def field_max(self) -> float:
        return float(self.field.max()) if self.field.size else 0.0

    def lit_cells(self) -> int:
        """Cells above the sparsest glyph."""
        return int(np.count_nonzero(self.glyphs))

    def solid_cells(self) -> int:
        return int(np.count_nonzero(self.glyphs == len(self.config.ramp) - 1))


# ═══════════════════════════════════════════════════════════════════════
#  Rotating title
# ═══════════════════════════════════════════════════════════════════════

class TitleRotator:
    """Cycles through a list of titles on its own interval."""

    def __init__(
        self,
        scheduler: FrameScheduler,
        titles: Sequence[str] = TITLES,
        interval: float = TITLE_INTERVAL,
    ) -> None:
        if not titles:
            raise ValueError("need at least one title")
        self.scheduler = scheduler
        self.titles: list[str] = list(titles)
        self.interval = interval
        self.index: int = 0
        self._token: int | None = None

    @property
    def current(self) -> str:
        return self.titles[self.index]

    def advance(self) -> None:
        self.index = (self.index + 1) % len(self.titles)

    def start(self) -> None:
        if self._token is None:
            self._token = self.scheduler.set_interval(self.advance, self.interval)

    def stop(self) -> None:
        if self._token is not None:
            self.scheduler.clear_interval(self._token)
            self._token = None


# ═══════════════════════════════════════════════════════════════════════
#  Stats logger
# ═══════════════════════════════════════════════════════════════════════

class FrameStatsLogger:
    """Writes per-frame telemetry to CSV for post-hoc tuning."""

    HEADER: ClassVar[str] = "tick,time_s,clock,field_max,lit_cells,solid_cells,fps\n"

    def __init__(self, path: Path) -> None:
        self._path = path
        self._fh: IO[str] | None = None
        self._t0: float = time.monotonic()

    @property
    def enabled(self) -> bool:
        return self._fh is not None

    def open(self) -> None:
        try:
            self._fh = open(self._path, "w")
            self._fh.write(self.HEADER)
            self._fh.flush()
        except OSError:
            self._fh = None

    def log(
        self,
        tick: int,
        clock: float,
        field_max: float,
        lit: int,
        solid: int,
        fps: float,
    ) -> None:
        if self._fh is None:
            return
        t = time.monotonic() - self._t0
        try:
            self._fh.write(
                f"{tick},{t:.2f},{clock:.4f},{field_max:.3f},{lit},{solid},{fps:.1f}\n"
            )
            if tick % 50 == 0:
                self._fh.flush()
        except OSError:
            self.close()

    def close(self) -> None:
        if self._fh is not None:
            try:
                self._fh.close()
            except OSError:
                pass
            self._fh = None


# ═══════════════════════════════════════════════════════════════════════
#  Terminal host
# ═══════════════════════════════════════════════════════════════════════

def fit_config(args: argparse.Namespace, max_y: int, max_x: int) -> FieldConfig:
    """Clip the requested grid to the terminal, leaving a row for the status bar.

    The wobble is given in cells for the full-size grid, so it shrinks with
    the clip to keep every blob on screen.
    """
    width = max(1, min(args.width, max_x))
    height = max(1, min(args.height, max_y - 1))
    return FieldConfig(
        width=width,
        height=height,
        blob_count=args.blobs,
        wobble_x=WOBBLE_X * width / WIDTH,
        wobble_y=WOBBLE_Y * height / HEIGHT,
    )


def draw_status(
    stdscr: curses.window,
    animator: FieldAnimator,
    title: str,
    fps: float,
) -> None:
    max_y, max_x = stdscr.getmaxyx()
    left = f"  {title}  tick {animator.ticks:,}  t {animator.time:.3f}  {fps:4.0f} fps"
    right = "q r  "
    pad = max(1, max_x - len(left) - len(right) - 1)
    line = (left + " " * pad + right)[: max_x - 1]
    try:
        stdscr.addstr(max_y - 1, 0, line, curses.A_DIM)
    except curses.error:
        pass


def main(stdscr: curses.window, args: argparse.Namespace) -> None:
    curses.curs_set(0)
    stdscr.nodelay(True)
    stdscr.timeout(0)

    max_y, max_x = stdscr.getmaxyx()
    rng = random.Random(args.seed)
    scheduler = FrameScheduler()
    surface = CursesSurface(stdscr)
    animator = FieldAnimator(surface, scheduler, fit_config(args, max_y, max_x), rng)
    rotator = TitleRotator(scheduler)

    logger: FrameStatsLogger | None = None
    if args.log:
        logger = FrameStatsLogger(Path(args.log))
        logger.open()

    frame_budget = 1.0 / args.fps
    frame_times: deque[float] = deque(maxlen=30)

    animator.start()
    rotator.start()
    try:
        while True:
            # ── Input ──────────────────────────────────────────────
            try:
                key = stdscr.getch()
            except curses.error:
                key = -1

            if key in (ord("q"), ord("Q")):
                break
            elif key in (ord("r"), ord("R")):
                animator.stop()
                animator.start()
            elif key == curses.KEY_RESIZE:
                max_y, max_x = stdscr.getmaxyx()
                animator.stop()
                animator = FieldAnimator(surface, scheduler, fit_config(args, max_y, max_x), rng)
                animator.start()

            # ── Frame ──────────────────────────────────────────────
            t0 = time.monotonic()
            stdscr.erase()
            scheduler.run_frame()

            frame_times.append(t0)
            fps = 0.0
            if len(frame_times) >= 2:
                span = frame_times[-1] - frame_times[0]
                if span > 0:
                    fps = (len(frame_times) - 1) / span

            draw_status(stdscr, animator, rotator.current, fps)
            stdscr.refresh()

            # ── Log ────────────────────────────────────────────────
            if logger is not None:
                logger.log(
                    tick=animator.ticks,
                    clock=animator.time,
                    field_max=animator.field_max(),
                    lit=animator.lit_cells(),
                    solid=animator.solid_cells(),
                    fps=fps,
                )

            elapsed = time.monotonic() - t0
            if elapsed < frame_budget:
                time.sleep(frame_budget - elapsed)

    finally:
        animator.stop()
        rotator.stop()
        if logger is not None:
            logger.close()


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Metaballs drifting through a terminal")
    parser.add_argument("--width", type=int, default=WIDTH,
                        help=f"Grid width in cells (default: {WIDTH})")
    parser.add_argument("--height", type=int, default=HEIGHT,
                        help=f"Grid height in cells (default: {HEIGHT})")
    parser.add_argument("--blobs", type=int, default=BLOB_COUNT,
                        help=f"Number of blobs (default: {BLOB_COUNT})")
    parser.add_argument("--seed", type=int, default=None,
                        help="Seed for blob placement (default: random)")
    parser.add_argument("--fps", type=float, default=DEFAULT_FPS,
                        help=f"Target frame rate (default: {DEFAULT_FPS:.0f})")
    parser.add_argument("--log", type=str, default=None,
                        help="Write per-frame telemetry CSV to this path")
    return parser


def cli(argv: Sequence[str] | None = None) -> None:
    parser = build_parser()
    args = parser.parse_args(argv)
    if args.fps <= 0:
        parser.error("--fps must be positive")
    if args.blobs < 0:
        parser.error("--blobs must be at least 0")
    if args.width < 1 or args.height < 1:
        parser.error("--width and --height must be at least 1")
    try:
        curses.wrapper(main, args)
    except KeyboardInterrupt:
        pass


if __name__ == "__main__":
    cli()
