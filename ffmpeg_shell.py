"""
Video I/O - Imperative Shell

Handles every file and process side effect around the renderer:
- FFmpeg subprocesses (frame extraction, H.264 encoding)
- Video probing via OpenCV
- PNG frame reading/writing via Pillow

Pure side-effects module - no rendering logic. Frames are uint8 numpy
arrays indexed [y, x, channel].
"""

import subprocess
from dataclasses import dataclass
from pathlib import Path
from typing import Iterable, List, Optional, Tuple

import cv2  # type: ignore
import numpy as np  # type: ignore
from PIL import Image  # type: ignore


FRAME_PATTERN = "frame_%03d.png"
FRAME_GLOB = "frame_*.png"

FFMPEG_MISSING_MESSAGE = (
    "FFmpeg not found. Please install FFmpeg:\n"
    "  macOS: brew install ffmpeg\n"
    "  Linux: apt-get install ffmpeg\n"
    "  Windows: Download from https://ffmpeg.org/"
)


# ============================================================================
# Probing
# ============================================================================

@dataclass(frozen=True)
class VideoInfo:
    """Basic stream properties of a video file

    Attributes:
        width, height: Frame size in pixels
        frame_count: Frame count reported by the container (may be approximate)
        fps: Frames per second (0.0 if unknown)
    """
    width: int
    height: int
    frame_count: int
    fps: float


def probe_video(video_path: str) -> VideoInfo:
    """Read size, frame count and rate of a video with OpenCV

    Raises:
        FileNotFoundError: If the file doesn't exist
        IOError: If OpenCV cannot open it
    """
    path = Path(video_path)
    if not path.exists():
        raise FileNotFoundError(f"Video file not found: {video_path}")

    capture = cv2.VideoCapture(str(path))
    try:
        if not capture.isOpened():
            raise IOError(f"Failed to open video: {video_path}")
        return VideoInfo(
            width=int(capture.get(cv2.CAP_PROP_FRAME_WIDTH)),
            height=int(capture.get(cv2.CAP_PROP_FRAME_HEIGHT)),
            frame_count=int(capture.get(cv2.CAP_PROP_FRAME_COUNT)),
            fps=float(capture.get(cv2.CAP_PROP_FPS) or 0.0),
        )
    finally:
        capture.release()


def list_frame_files(frames_dir: str) -> List[Path]:
    """Sorted frame_*.png files in a directory"""
    return sorted(Path(frames_dir).glob(FRAME_GLOB))


def probe_frames_dir(frames_dir: str) -> Tuple[int, int, int]:
    """Size of the first frame and number of frames in a directory

    Returns:
        (width, height, frame_count)

    Raises:
        FileNotFoundError: If the directory holds no frame_*.png files
    """
    files = list_frame_files(frames_dir)
    if not files:
        raise FileNotFoundError(f"No {FRAME_GLOB} files in {frames_dir}")
    with Image.open(files[0]) as img:
        width, height = img.size
    return width, height, len(files)


# ============================================================================
# Frame Files (Pillow)
# ============================================================================

def load_frame(path: str, mode: str = "RGB") -> np.ndarray:
    """Load an image file as a uint8 array in the given Pillow mode"""
    with Image.open(path) as img:
        return np.array(img.convert(mode))


def save_frame(frame: np.ndarray, path: str) -> None:
    """Write an RGB or RGBA uint8 frame to an image file (format from extension)"""
    mode = "RGBA" if frame.shape[2] == 4 else "RGB"
    Image.fromarray(frame, mode).save(path)


def frame_path(frames_dir: str, index: int) -> Path:
    return Path(frames_dir) / (FRAME_PATTERN % index)


# ============================================================================
# Frame Extraction
# ============================================================================

def build_extract_command(video_path: str, frames_dir: str) -> List[str]:
    """FFmpeg command that dumps every frame as frame_000.png, frame_001.png, ..."""
    return [
        "ffmpeg",
        "-y",
        "-i", str(video_path),
        "-start_number", "0",
        str(Path(frames_dir) / FRAME_PATTERN),
    ]


def extract_frames(video_path: str, frames_dir: str, verbose: bool = True) -> List[Path]:
    """Extract all frames of a video into a directory

    Side effects:
    - Creates frames_dir
    - Runs FFmpeg, writing one PNG per frame

    Returns:
        Sorted list of extracted frame files

    Raises:
        FileNotFoundError: If the video doesn't exist
        RuntimeError: If FFmpeg is missing or fails
    """
    if not Path(video_path).exists():
        raise FileNotFoundError(f"Video file not found: {video_path}")
    Path(frames_dir).mkdir(parents=True, exist_ok=True)

    cmd = build_extract_command(video_path, frames_dir)
    if verbose:
        print(f"Extracting frames from {video_path}...")
    try:
        result = subprocess.run(cmd, stdout=subprocess.DEVNULL, stderr=subprocess.PIPE)
    except FileNotFoundError:
        raise RuntimeError(FFMPEG_MISSING_MESSAGE)
    if result.returncode != 0:
        stderr = result.stderr.decode("utf-8", errors="replace")
        raise RuntimeError(f"FFmpeg frame extraction failed:\n{stderr}")

    files = list_frame_files(frames_dir)
    if verbose:
        print(f"✓ {len(files)} frames extracted to {frames_dir}")
    return files


# ============================================================================
# Encoding
# ============================================================================

class FFmpegEncoder:
    """FFmpeg video encoder fed with raw frames over a pipe

    Side effects:
    - Spawns FFmpeg subprocess
    - Writes video data to pipe
    - Creates output video file
    - Manages process cleanup
    """

    def __init__(
        self,
        output_path: str,
        width: int,
        height: int,
        fps: int = 30,
        input_pix_fmt: str = "rgb24",
        codec: str = "libx264",
        pix_fmt: str = "yuv420p",
        verbose: bool = True
    ):
        """Initialize FFmpeg encoder

        Args:
            output_path: Path for output video file
            width: Frame width in pixels
            height: Frame height in pixels
            fps: Frames per second
            input_pix_fmt: Raw layout of written frames ("rgb24" or "rgba")
            codec: FFmpeg video codec
            pix_fmt: Pixel format for output (yuv420p for compatibility)
            verbose: Print encoding progress
        """
        if input_pix_fmt not in ("rgb24", "rgba"):
            raise ValueError(f"Unsupported input pixel format: {input_pix_fmt}")
        self.output_path = str(output_path)
        self.width = width
        self.height = height
        self.fps = fps
        self.input_pix_fmt = input_pix_fmt
        self.codec = codec
        self.pix_fmt = pix_fmt
        self.verbose = verbose

        self.process: Optional[subprocess.Popen] = None
        self.frames_written = 0

    @property
    def channels(self) -> int:
        return 4 if self.input_pix_fmt == "rgba" else 3

    def build_command(self) -> List[str]:
        """FFmpeg command line for the configured stream"""
        return [
            "ffmpeg",
            "-y",  # Overwrite output
            "-f", "rawvideo",
            "-vcodec", "rawvideo",
            "-s", f"{self.width}x{self.height}",
            "-pix_fmt", self.input_pix_fmt,
            "-r", str(self.fps),
            "-i", "-",  # Read video from stdin
            "-an",
            "-c:v", self.codec,
            "-pix_fmt", self.pix_fmt,
            "-movflags", "+faststart",
            self.output_path,
        ]

    def start(self) -> None:
        """Start FFmpeg subprocess

        Raises:
            RuntimeError: If already started or FFmpeg cannot be started
        """
        if self.process is not None:
            raise RuntimeError("Encoder already started")

        cmd = self.build_command()
        if self.verbose:
            print(f"Starting FFmpeg encoder: {self.output_path} "
                  f"({self.width}x{self.height} @ {self.fps}fps, {self.codec})")
        Path(self.output_path).parent.mkdir(parents=True, exist_ok=True)

        try:
            self.process = subprocess.Popen(
                cmd,
                stdin=subprocess.PIPE,
                stdout=subprocess.DEVNULL,
                stderr=subprocess.PIPE
            )
        except FileNotFoundError:
            raise RuntimeError(FFMPEG_MISSING_MESSAGE)
        except OSError as e:
            raise RuntimeError(f"Failed to start FFmpeg: {e}")

    def write_frame(self, frame: np.ndarray) -> None:
        """Write a single frame to FFmpeg

        Raises:
            RuntimeError: If encoder not started or FFmpeg died
            ValueError: If the frame has the wrong shape or dtype
        """
        if self.process is None:
            raise RuntimeError("Encoder not started. Call start() first.")

        expected = (self.height, self.width, self.channels)
        if frame.shape != expected:
            raise ValueError(f"Frame shape mismatch: expected {expected}, got {frame.shape}")
        if frame.dtype != np.uint8:
            raise ValueError(f"Frame dtype must be uint8, got {frame.dtype}")

        try:
            self.process.stdin.write(frame.tobytes())
        except BrokenPipeError:
            stderr = self.process.stderr.read().decode("utf-8", errors="replace")
            raise RuntimeError(f"FFmpeg process failed:\n{stderr}")
        self.frames_written += 1

    def finish(self) -> Tuple[bool, str]:
        """Close the pipe and wait for FFmpeg

        Returns:
            (success, stderr_output) tuple
        """
        if self.process is None:
            raise RuntimeError("Encoder not started")

        try:
            self.process.stdin.close()
            stderr = self.process.stderr.read().decode("utf-8", errors="replace")
            returncode = self.process.wait()
            if self.verbose:
                if returncode == 0:
                    print(f"✓ Encoded {self.frames_written} frames to {self.output_path}")
                else:
                    print(f"✗ FFmpeg exited with code {returncode}")
            return (returncode == 0, stderr)
        finally:
            self.process = None
            self.frames_written = 0

    def __enter__(self):
        self.start()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        if self.process is not None:
            if exc_type is not None:
                # Rendering failed: stop FFmpeg without waiting on a partial stream
                self.process.kill()
                self.process.wait()
                self.process = None
            else:
                success, stderr = self.finish()
                if not success:
                    raise RuntimeError(f"FFmpeg encoding failed:\n{stderr}")
        return False


def encode_frames_to_video(
    frames: Iterable[np.ndarray],
    output_path: str,
    width: int,
    height: int,
    fps: int = 30,
    input_pix_fmt: str = "rgb24",
    verbose: bool = True
) -> int:
    """Encode an iterable of frames into a video file

    Returns:
        Number of frames written

    Raises:
        RuntimeError: If FFmpeg is missing or fails
    """
    written = 0
    with FFmpegEncoder(output_path, width, height, fps=fps,
                       input_pix_fmt=input_pix_fmt, verbose=verbose) as encoder:
        for frame in frames:
            encoder.write_frame(frame)
            written += 1
    return written
