#!/usr/bin/env python3
"""
Formula Shader - Imperative Shell

Drives the formula shader over a whole frame sequence and hands finished
frames to disk or to FFmpeg.

Architecture:
- Functional core: formula_parser.py, formula_core.py, shader_core.py,
  frame_core.py, transforms_core.py (pure functions)
- Imperative shell: This file (worker pool, progress output, file and
  process I/O via ffmpeg_shell.py and moderngl_shell.py)

Usage:
    python shader_shell.py render --width 320 --height 240 --frames 90 --output-dir frames/
    python shader_shell.py render --input-video input/input.mp4 --output output/output.mp4
    python shader_shell.py transform frame.png dct.png --kind dct --block-size 8
"""

import argparse
import os
import sys
import tempfile
from concurrent.futures import Future, ThreadPoolExecutor
from pathlib import Path
from typing import Dict, Iterator, List, Mapping, Optional, Tuple, Union

import numpy as np  # type: ignore

from formula_types import (
    CHANNEL_NAMES,
    FormulaError,
    RenderSettings,
    RenderState,
)
from shader_core import (
    ChannelProgram,
    DEFAULT_FORMULAS,
    DEFAULT_FPS,
    DEFAULT_FRAME_COUNT,
    compile_program_from_mapping,
    frame_indices,
    frame_time,
    render_frame,
    render_frame_by_pixel,
)
from frame_core import composite_over, flatten_rgba
from transforms_core import apply_block_transform, BLOCK_TRANSFORMS
from ffmpeg_shell import (
    FFmpegEncoder,
    extract_frames,
    frame_path,
    load_frame,
    probe_frames_dir,
    save_frame,
)
from moderngl_shell import PlasmaRenderer, plasma_frame_cpu


PROGRESS_EVERY = 10


def default_workers() -> int:
    """CPU count minus one; numpy releases the GIL during evaluation"""
    return max(1, (os.cpu_count() or 2) - 1)


# ============================================================================
# Frame Sequencer
# ============================================================================

class FrameSequencer:
    """Compiles a channel program once and renders frames 0..N-1

    State machine:
        UNCOMPILED → COMPILED → RENDERING → DONE
        UNCOMPILED → FAILED (compile error; terminal)
    A frame that fails to render also moves the sequencer to FAILED; frames
    already yielded are unaffected.

    Attributes:
        settings: Raster size and frame count
        state: Current RenderState
        program: Compiled program (None until compiled)
        current_frame: Index of the frame last handed out (None before the first)
        error: Exception that moved the sequencer to FAILED
    """

    def __init__(self, settings: RenderSettings):
        self.settings = settings
        self.state = RenderState.UNCOMPILED
        self.program: Optional[ChannelProgram] = None
        self.current_frame: Optional[int] = None
        self.frames_rendered = 0
        self.error: Optional[Exception] = None

    def compile(self, formulas: Union[Mapping[str, str], ChannelProgram]) -> ChannelProgram:
        """Parse and validate the R, G, B, A formulas

        An already compiled ChannelProgram is adopted as is.

        Raises:
            FormulaError: On any parse or validation error (state → FAILED)
            ValueError: If a channel is missing (state → FAILED)
            RuntimeError: If called from any state but UNCOMPILED
        """
        if self.state is RenderState.FAILED:
            raise RuntimeError(f"Sequencer failed and cannot be reused: {self.error}")
        if self.state is not RenderState.UNCOMPILED:
            raise RuntimeError(f"Program already compiled (state: {self.state.value})")

        try:
            if isinstance(formulas, ChannelProgram):
                program = formulas
            else:
                program = compile_program_from_mapping(formulas)
        except (FormulaError, ValueError) as e:
            self.state = RenderState.FAILED
            self.error = e
            raise

        self.program = program
        self.state = RenderState.COMPILED
        return program

    def frames(self, workers: Optional[int] = None, pixelwise: bool = False) -> Iterator[Tuple[int, np.ndarray]]:
        """Render every frame in order

        Args:
            workers: Thread count; None or 1 renders on the calling thread
            pixelwise: Use the per-pixel reference renderer

        Returns:
            Iterator of (frame_index, RGBA frame). Closing it early cancels
            frames not yet started and discards frames in progress.

        Raises:
            RuntimeError: If not in COMPILED state
        """
        if self.state is RenderState.FAILED:
            raise RuntimeError(f"Sequencer failed and cannot render: {self.error}")
        if self.state is not RenderState.COMPILED:
            raise RuntimeError(f"Cannot render from state {self.state.value}")

        self.state = RenderState.RENDERING
        renderer = render_frame_by_pixel if pixelwise else render_frame
        if workers is None or workers <= 1:
            return self._track(self._render_sequential(renderer))
        return self._track(self._render_parallel(renderer, workers))

    def _track(self, frames: Iterator[Tuple[int, np.ndarray]]) -> Iterator[Tuple[int, np.ndarray]]:
        try:
            for index, frame in frames:
                self.current_frame = index
                self.frames_rendered += 1
                yield index, frame
        except Exception as e:
            self.state = RenderState.FAILED
            self.error = e
            raise
        finally:
            frames.close()
        self.state = RenderState.DONE

    def _render_sequential(self, renderer) -> Iterator[Tuple[int, np.ndarray]]:
        s = self.settings
        for index in frame_indices(s.frame_count):
            yield index, renderer(self.program, index, s.width, s.height)

    def _render_parallel(self, renderer, workers: int) -> Iterator[Tuple[int, np.ndarray]]:
        s = self.settings
        max_in_flight = workers * 2
        pending: Dict[int, Future] = {}
        next_submit = 0

        with ThreadPoolExecutor(max_workers=workers) as executor:
            try:
                for index in frame_indices(s.frame_count):
                    while next_submit < s.frame_count and len(pending) < max_in_flight:
                        pending[next_submit] = executor.submit(
                            renderer, self.program, next_submit, s.width, s.height
                        )
                        next_submit += 1
                    # Results are delivered strictly in frame order
                    yield index, pending.pop(index).result()
            finally:
                for future in pending.values():
                    future.cancel()


# ============================================================================
# Overlay Sources
# ============================================================================

def formula_overlays(
    formulas: Union[Mapping[str, str], ChannelProgram],
    settings: RenderSettings,
    workers: Optional[int] = None,
    pixelwise: bool = False,
    verbose: bool = True
) -> Iterator[np.ndarray]:
    """Compile formulas and yield RGBA frames (compile errors raise before the first frame)"""
    sequencer = FrameSequencer(settings)
    program = sequencer.compile(formulas)
    if verbose:
        for channel, text in program.describe().items():
            print(f"  {channel}: {text}")
    frames = sequencer.frames(workers=workers, pixelwise=pixelwise)
    return (frame for _, frame in frames)


def plasma_overlays(settings: RenderSettings, verbose: bool = True) -> Iterator[np.ndarray]:
    """Yield GPU plasma frames, falling back to the CPU version without OpenGL"""
    try:
        renderer = PlasmaRenderer(settings.width, settings.height)
    except Exception as e:
        if verbose:
            print(f"⚠️  Warning: OpenGL unavailable ({e}), rendering plasma on CPU")
        for index in frame_indices(settings.frame_count):
            yield plasma_frame_cpu(settings.width, settings.height, frame_time(index, settings.fps))
        return

    with renderer:
        for index in frame_indices(settings.frame_count):
            yield renderer.render(frame_time(index, settings.fps))


def print_progress(done: int, total: int, verbose: bool) -> None:
    if verbose and (done % PROGRESS_EVERY == 0 or done == total):
        print(f"  Rendered {done}/{total} frames...", end="\r", flush=True)
        if done == total:
            print()


# ============================================================================
# High-Level Rendering Functions
# ============================================================================

def render_to_directory(
    formulas: Mapping[str, str],
    output_dir: str,
    settings: RenderSettings,
    workers: Optional[int] = None,
    pixelwise: bool = False,
    verbose: bool = True
) -> List[Path]:
    """Render every frame of a formula program to frame_%03d.png files

    Side effects:
    - Creates output_dir
    - Writes one RGBA PNG per frame

    Returns:
        Paths of the written frames, in frame order

    Raises:
        FormulaError: Before any file is written, if a formula is invalid
    """
    if verbose:
        print("=" * 60)
        print("Rendering Formula Shader")
        print("=" * 60)
        print(f"Output: {output_dir}")
        print(f"Resolution: {settings.width}x{settings.height}, {settings.frame_count} frames")

    sequencer = FrameSequencer(settings)
    program = sequencer.compile(formulas)
    if verbose:
        for channel, text in program.describe().items():
            print(f"  {channel}: {text}")

    Path(output_dir).mkdir(parents=True, exist_ok=True)
    written = []
    for index, frame in sequencer.frames(workers=workers, pixelwise=pixelwise):
        path = frame_path(output_dir, index)
        save_frame(frame, str(path))
        written.append(path)
        print_progress(index + 1, settings.frame_count, verbose)

    if verbose:
        print(f"✓ {len(written)} frames written to {output_dir}")
    return written


def render_to_video(
    output_path: str,
    formulas: Optional[Mapping[str, str]] = None,
    settings: Optional[RenderSettings] = None,
    input_video: Optional[str] = None,
    overlay: str = "formula",
    fps: int = DEFAULT_FPS,
    workers: Optional[int] = None,
    pixelwise: bool = False,
    frames_dir: Optional[str] = None,
    blended_dir: Optional[str] = None,
    verbose: bool = True
) -> int:
    """Render an overlay sequence, optionally over an input video, and encode it

    With input_video the frames are extracted first and the frame size and
    count come from the extracted frames; otherwise settings is required.

    Args:
        output_path: Output video path (.mp4)
        formulas: R, G, B, A formulas (DEFAULT_FORMULAS if None)
        settings: Size and frame count when there is no input video
        input_video: Video to composite the overlay onto
        overlay: "formula" or "plasma"
        fps: Output frame rate (also the time base of the plasma overlay)
        workers: Threads for formula rendering
        pixelwise: Use the per-pixel reference renderer for formula overlays
        frames_dir: Where to extract input frames (temporary if None)
        blended_dir: Also save each composited frame here as PNG
        verbose: Print progress information

    Returns:
        Number of frames encoded

    Raises:
        ValueError: Unknown overlay, or neither input_video nor settings
        FormulaError: Invalid formula (before FFmpeg is started)
        FileNotFoundError: Missing input video
        RuntimeError: FFmpeg missing or failing
    """
    if overlay not in ("formula", "plasma"):
        raise ValueError(f"Unknown overlay {overlay!r}, expected 'formula' or 'plasma'")
    if input_video is None and settings is None:
        raise ValueError("Either input_video or settings is required")
    formulas = DEFAULT_FORMULAS if formulas is None else formulas
    program = None
    if overlay == "formula":
        # Formula errors surface before any frame is extracted or encoded
        program = compile_program_from_mapping(formulas)

    if verbose:
        print("=" * 60)
        print(f"Rendering Formula Shader to Video ({overlay} overlay)")
        print("=" * 60)
        print(f"Output: {output_path}")
        if input_video:
            print(f"Input: {input_video}")

    with tempfile.TemporaryDirectory(prefix="formula_frames_") as temp_dir:
        input_files: List[Path] = []
        if input_video is not None:
            input_files = extract_frames(input_video, frames_dir or temp_dir, verbose=verbose)
            width, height, count = probe_frames_dir(frames_dir or temp_dir)
            settings = RenderSettings(width, height, count, fps)
        else:
            settings = RenderSettings(settings.width, settings.height, settings.frame_count, fps)

        if verbose:
            print(f"Resolution: {settings.width}x{settings.height} @ {fps} FPS, "
                  f"{settings.frame_count} frames")

        if overlay == "formula":
            overlays = formula_overlays(program, settings, workers=workers,
                                        pixelwise=pixelwise, verbose=verbose)
        else:
            overlays = plasma_overlays(settings, verbose=verbose)

        if blended_dir:
            Path(blended_dir).mkdir(parents=True, exist_ok=True)

        written = 0
        with FFmpegEncoder(output_path, settings.width, settings.height, fps=fps,
                           verbose=verbose) as encoder:
            for index, overlay_frame in enumerate(overlays):
                if input_files:
                    frame = composite_over(load_frame(str(input_files[index]), "RGB"), overlay_frame)
                else:
                    frame = flatten_rgba(overlay_frame)
                if blended_dir:
                    save_frame(frame, str(frame_path(blended_dir, index)))
                encoder.write_frame(frame)
                written += 1
                print_progress(written, settings.frame_count, verbose)

    return written


def transform_image(
    input_path: str,
    output_path: str,
    kind: str = "dct",
    block_size: int = 8,
    verbose: bool = True
) -> None:
    """Apply a block-wise DCT/DST to an image file and save the visualisation

    Raises:
        FileNotFoundError: If input_path doesn't exist
        ValueError: Unknown kind or bad block size
    """
    if not Path(input_path).exists():
        raise FileNotFoundError(f"Image not found: {input_path}")
    frame = load_frame(input_path, "RGBA")
    result = apply_block_transform(frame, block_size=block_size, kind=kind)
    Path(output_path).parent.mkdir(parents=True, exist_ok=True)
    save_frame(result, output_path)
    if verbose:
        print(f"✓ {kind.upper()} ({block_size}x{block_size} blocks) written to {output_path}")


# ============================================================================
# Command Line
# ============================================================================

def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Render per-pixel RGBA formulas into frame sequences and videos",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python shader_shell.py render --frames 30 --output-dir frames/
  python shader_shell.py render --red "x ^ y" --green "(y*y+frame)%255" --output out.mp4 --width 320 --height 240
  python shader_shell.py render --input-video input/input.mp4 --output output/output.mp4 --overlay plasma
  python shader_shell.py transform frame.png dct.png --kind dct
        """
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    render = subparsers.add_parser("render", help="Render formula frames or video")
    for channel, option in zip(CHANNEL_NAMES, ("--red", "--green", "--blue", "--alpha")):
        render.add_argument(option, default=DEFAULT_FORMULAS[channel],
                            help=f"{channel} channel formula (default: {DEFAULT_FORMULAS[channel]})")
    render.add_argument("--width", type=int, default=320, help="Frame width (default: 320)")
    render.add_argument("--height", type=int, default=240, help="Frame height (default: 240)")
    render.add_argument("--frames", type=int, default=DEFAULT_FRAME_COUNT,
                        help=f"Frame count (default: {DEFAULT_FRAME_COUNT})")
    render.add_argument("--fps", type=int, default=DEFAULT_FPS,
                        help=f"Frames per second (default: {DEFAULT_FPS})")
    render.add_argument("--workers", type=int, default=default_workers(),
                        help="Rendering threads (default: CPU count - 1)")
    render.add_argument("--pixelwise", action="store_true",
                        help="Use the per-pixel reference renderer (slow)")
    target = render.add_mutually_exclusive_group(required=True)
    target.add_argument("--output-dir", help="Write frame_%%03d.png files here")
    target.add_argument("--output", help="Encode an MP4 video here")
    render.add_argument("--input-video", help="Composite the overlay onto this video (video output only)")
    render.add_argument("--overlay", choices=("formula", "plasma"), default="formula",
                        help="Overlay source for video output (default: formula)")
    render.add_argument("--frames-dir", help="Keep extracted input frames here")
    render.add_argument("--blended-dir", help="Also save composited frames here")
    render.add_argument("--quiet", action="store_true", help="Suppress progress output")

    transform = subparsers.add_parser("transform", help="Block-wise DCT/DST of an image")
    transform.add_argument("input", help="Input image")
    transform.add_argument("output", help="Output image")
    transform.add_argument("--kind", choices=sorted(BLOCK_TRANSFORMS), default="dct",
                           help="Transform (default: dct)")
    transform.add_argument("--block-size", type=int, default=8, help="Block size (default: 8)")
    transform.add_argument("--quiet", action="store_true", help="Suppress progress output")

    return parser


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    verbose = not args.quiet

    try:
        if args.command == "transform":
            transform_image(args.input, args.output, kind=args.kind,
                            block_size=args.block_size, verbose=verbose)
            return 0

        formulas = {"R": args.red, "G": args.green, "B": args.blue, "A": args.alpha}
        if args.output_dir:
            if args.input_video:
                print("ERROR: --input-video requires --output")
                return 1
            settings = RenderSettings(args.width, args.height, args.frames, args.fps)
            render_to_directory(formulas, args.output_dir, settings,
                                workers=args.workers, pixelwise=args.pixelwise, verbose=verbose)
        else:
            settings = None
            if not args.input_video:
                settings = RenderSettings(args.width, args.height, args.frames, args.fps)
            render_to_video(
                args.output,
                formulas=formulas,
                settings=settings,
                input_video=args.input_video,
                overlay=args.overlay,
                fps=args.fps,
                workers=args.workers,
                pixelwise=args.pixelwise,
                frames_dir=args.frames_dir,
                blended_dir=args.blended_dir,
                verbose=verbose,
            )
    except (FormulaError, FileNotFoundError, ValueError, RuntimeError) as e:
        print(f"ERROR: {e}")
        return 1

    return 0


if __name__ == "__main__":
    sys.exit(main())
