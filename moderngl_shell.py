"""
ModernGL Plasma Overlay - Imperative Shell

Renders the fixed "plasma" fragment shader offscreen on the GPU and reads
each frame back as an RGBA numpy array. This is the hardware counterpart of
the formula shader: a single hard-coded program driven only by time, used
as an alternative overlay when compositing onto an input video.

Side effects: creates an OpenGL context, allocates GPU buffers, reads GPU memory.
"""

from typing import Optional

import moderngl  # type: ignore
import numpy as np  # type: ignore


# ============================================================================
# Shader Source Code
# ============================================================================

VERTEX_SHADER = """
#version 330

in vec2 vert;
out vec2 uv;

void main() {
    uv = vert * 0.5 + 0.5;
    gl_Position = vec4(vert, 0.0, 1.0);
}
"""

FRAGMENT_SHADER = """
#version 330

in vec2 uv;
out vec4 color;
uniform float u_time;

void main() {
    float r = 0.5 + 0.5 * sin(u_time + uv.x * 10.0);
    float g = 0.5 + 0.5 * cos(u_time + uv.y * 10.0);
    float b = r * g;
    color = vec4(r, g, b, 1.0);
}
"""

# Full-screen quad drawn as a triangle strip
QUAD_VERTICES = np.array([
    -1.0, -1.0,
     1.0, -1.0,
    -1.0,  1.0,
     1.0,  1.0,
], dtype="f4")


def plasma_frame_cpu(width: int, height: int, time: float) -> np.ndarray:
    """CPU evaluation of the plasma shader at pixel centres

    Pure function. Matches the GPU output to within rounding, with row 0 at
    the top of the image.

    Returns:
        RGBA uint8 array (height, width, 4)
    """
    u = (np.arange(width) + 0.5) / width
    v = (np.arange(height)[::-1] + 0.5) / height
    r = 0.5 + 0.5 * np.sin(time + u * 10.0)
    g = 0.5 + 0.5 * np.cos(time + v * 10.0)
    frame = np.empty((height, width, 4), dtype=np.uint8)
    frame[:, :, 0] = np.rint(np.broadcast_to(r, (height, width)) * 255.0)
    frame[:, :, 1] = np.rint(np.broadcast_to(g.reshape(-1, 1), (height, width)) * 255.0)
    frame[:, :, 2] = np.rint(np.outer(g, r) * 255.0)
    frame[:, :, 3] = 255
    return frame


# ============================================================================
# GPU Renderer
# ============================================================================

class PlasmaRenderer:
    """Offscreen GPU renderer for the plasma shader

    Use as a context manager (or call release()) to free GPU resources.
    """

    def __init__(self, width: int, height: int, ctx: Optional[moderngl.Context] = None):
        """Create context, framebuffer and shader program

        Args:
            width: Frame width in pixels
            height: Frame height in pixels
            ctx: Existing context to share (a standalone one is created if None)
        """
        self.width = width
        self.height = height
        self.owns_context = ctx is None
        self.ctx = ctx if ctx is not None else moderngl.create_standalone_context()

        self.fbo = self.ctx.simple_framebuffer((width, height), components=4)
        self.prog = self.ctx.program(vertex_shader=VERTEX_SHADER, fragment_shader=FRAGMENT_SHADER)
        self.vbo = self.ctx.buffer(QUAD_VERTICES.tobytes())
        self.vao = self.ctx.vertex_array(self.prog, [(self.vbo, "2f", "vert")])

    def render(self, time: float) -> np.ndarray:
        """Render one frame at the given time in seconds

        Returns:
            RGBA uint8 array (height, width, 4), row 0 at the top
        """
        self.fbo.use()
        self.ctx.viewport = (0, 0, self.width, self.height)
        self.fbo.clear(0.0, 0.0, 0.0, 1.0)
        self.prog["u_time"].value = float(time)
        self.vao.render(moderngl.TRIANGLE_STRIP)

        raw = self.fbo.read(components=4)
        img = np.frombuffer(raw, dtype="u1").reshape((self.height, self.width, 4))
        # Flip vertically (OpenGL origin is bottom-left, images are top-left)
        return np.flip(img, axis=0).copy()

    def release(self) -> None:
        self.vao.release()
        self.vbo.release()
        self.prog.release()
        self.fbo.release()
        if self.owns_context:
            self.ctx.release()

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.release()
        return False
