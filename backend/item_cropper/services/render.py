"""Side-effect-free frame builder for the crop canvas.

render() turns a session, its view transform and the current selection into
a flat list of draw commands. Any front end can replay them; tests inspect
them directly.
"""

from dataclasses import dataclass, field
from typing import List, Optional, Tuple

from .boxes import ImageSession
from .view import ViewTransform

HANDLE_SIZE = 8


@dataclass(frozen=True)
class DrawCommand:
    """One drawing primitive in canvas coordinates."""
    op: str  # image, push_rotation, stroke_rect, handle, text, pop
    x: float = 0.0
    y: float = 0.0
    width: float = 0.0
    height: float = 0.0
    color: str = ""
    line_width: float = 0.0
    dashed: bool = False
    text: str = ""
    font: str = ""
    angle: float = 0.0


@dataclass
class RenderFrame:
    canvas_width: float
    canvas_height: float
    commands: List[DrawCommand] = field(default_factory=list)

    def ops(self, op: str) -> List[DrawCommand]:
        return [c for c in self.commands if c.op == op]


def _handle_points(x: float, y: float, w: float, h: float) -> List[Tuple[float, float]]:
    corners = [(x, y), (x + w, y), (x, y + h), (x + w, y + h)]
    edges = [(x + w / 2, y), (x + w / 2, y + h), (x, y + h / 2), (x + w, y + h / 2)]
    return corners + edges


def render(
    session: ImageSession,
    transform: ViewTransform,
    selected_id: Optional[int] = None,
    focused: bool = True,
) -> RenderFrame:
    """Build the draw commands for one image and its boxes."""
    cw, ch = transform.canvas_size(session.width, session.height)
    frame = RenderFrame(canvas_width=cw, canvas_height=ch)
    scale = transform.scale
    px, py = transform.pan_x, transform.pan_y

    frame.commands.append(DrawCommand(
        op="image", x=px, y=py, width=session.width * scale, height=session.height * scale,
    ))

    for box in session.boxes:
        sx, sy = transform.to_screen(box.x, box.y)
        sw, sh = box.width * scale, box.height * scale
        rotated = bool(box.rotation)

        if rotated:
            frame.commands.append(DrawCommand(
                op="push_rotation", x=sx + sw / 2, y=sy + sh / 2, angle=box.rotation,
            ))

        selected = focused and box.id == selected_id
        frame.commands.append(DrawCommand(
            op="stroke_rect", x=sx, y=sy, width=sw, height=sh,
            color=box.color, line_width=3 if selected else 2, dashed=True,
        ))

        for hx, hy in _handle_points(sx, sy, sw, sh):
            frame.commands.append(DrawCommand(
                op="handle", x=hx - HANDLE_SIZE / 2, y=hy - HANDLE_SIZE / 2,
                width=HANDLE_SIZE, height=HANDLE_SIZE, color=box.color, line_width=2,
            ))

        frame.commands.append(DrawCommand(
            op="text", x=sx + 5, y=sy + 14, text=f"#{box.id}", color=box.color, font="12px system-ui",
        ))
        if box.label:
            frame.commands.append(DrawCommand(
                op="text", x=sx + 5, y=sy + sh - 5, text=box.label, color=box.color, font="12px system-ui",
            ))
        if box.flip_vertical:
            frame.commands.append(DrawCommand(
                op="text", x=sx + sw - 48, y=sy + sh - 6, text="↕ FLIP",
                color="#ef4444", font="bold 12px system-ui",
            ))
        if rotated:
            frame.commands.append(DrawCommand(
                op="text", x=sx + sw - 34, y=sy + 12, text=f"{box.rotation:.2f}°",
                color="red", font="10px system-ui",
            ))
            frame.commands.append(DrawCommand(op="pop"))

    return frame
