import argparse
import curses
import random

import numpy as np
import pytest

from ascii_fluid import (
    WOBBLE_X,
    WOBBLE_Y,
    FieldAnimator,
    FieldConfig,
    FrameScheduler,
    FrameStatsLogger,
    TextSurface,
    blob_positions,
    build_parser,
    cli,
    fit_config,
)
from fluid_bench import make_animator, timed_tick


def test_stats_logger_writes_csv(tmp_path):
    path = tmp_path / "stats.csv"
    logger = FrameStatsLogger(path)
    logger.open()
    assert logger.enabled
    logger.log(tick=1, clock=0.005, field_max=3.25, lit=120, solid=4, fps=59.9)
    logger.log(tick=2, clock=0.01, field_max=3.5, lit=121, solid=5, fps=60.0)
    logger.close()
    lines = path.read_text().splitlines()
    assert lines[0] == FrameStatsLogger.HEADER.strip()
    assert len(lines) == 3
    fields = lines[1].split(",")
    assert fields[0] == "1"
    assert fields[2] == "0.0050"
    assert fields[4:] == ["120", "4", "59.9"]


def test_stats_logger_unwritable_path_is_disabled(tmp_path):
    logger = FrameStatsLogger(tmp_path / "missing" / "stats.csv")
    logger.open()
    assert not logger.enabled
    logger.log(tick=1, clock=0.0, field_max=0.0, lit=0, solid=0, fps=0.0)
    logger.close()


def test_fit_config_clips_to_terminal():
    args = build_parser().parse_args(["--blobs", "3"])
    cfg = fit_config(args, max_y=30, max_x=100)
    assert (cfg.width, cfg.height, cfg.blob_count) == (100, 29, 3)
    cfg = fit_config(args, max_y=200, max_x=400)
    assert (cfg.width, cfg.height) == (160, 56)


def test_fit_config_tiny_terminal():
    args = argparse.Namespace(width=160, height=56, blobs=18)
    cfg = fit_config(args, max_y=1, max_x=0)
    assert (cfg.width, cfg.height) == (1, 1)


def test_parser_defaults():
    args = build_parser().parse_args([])
    assert args.width == 160 and args.height == 56 and args.blobs == 18
    assert args.seed is None and args.log is None


def test_bench_tick_matches_step():
    cfg = FieldConfig(width=48, height=16, blob_count=6)
    bench = make_animator(cfg, seed=3)
    plain = FieldAnimator(TextSurface(), FrameScheduler(), cfg, random.Random(3))
    plain.start()
    for _ in range(3):
        timings = timed_tick(bench)
        expected = plain.step()
    assert bench.surface.frame == expected
    assert bench.ticks == plain.ticks == 3
    assert set(timings) == {"blob_positions", "field_sum", "glyph_indices", "serialize", "write"}


def test_fit_config_keeps_blobs_on_small_terminal():
    args = build_parser().parse_args([])
    cfg = fit_config(args, max_y=24, max_x=80)
    assert (cfg.width, cfg.height) == (80, 23)
    speeds = np.array([cfg.speed_min, cfg.speed_min + cfg.speed_span / 2,
                       cfg.speed_min + cfg.speed_span])
    offsets = np.array([0.0, 41.7, 99.9])
    for t in np.linspace(0.0, 5000.0, 20001):
        x, y, _ = blob_positions(speeds, offsets, t, cfg)
        assert ((x >= 0) & (x < cfg.width)).all()
        assert ((y >= 0) & (y < cfg.height)).all()


def test_fit_config_full_size_keeps_wobble():
    cfg = fit_config(build_parser().parse_args([]), max_y=100, max_x=300)
    assert cfg.wobble_x == WOBBLE_X
    assert cfg.wobble_y == WOBBLE_Y


@pytest.mark.parametrize("argv", [
    ["--blobs", "-1"],
    ["--fps", "0"],
    ["--width", "0"],
    ["--height", "-3"],
])
def test_cli_rejects_bad_arguments_before_curses(argv, monkeypatch):
    def no_curses(*_args, **_kwargs):
        raise AssertionError("curses should not start")

    monkeypatch.setattr(curses, "wrapper", no_curses)
    with pytest.raises(SystemExit) as exc:
        cli(argv)
    assert exc.value.code == 2
