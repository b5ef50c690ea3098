"""
Generate app icon programmatically
"""

import math
import sys
from pathlib import Path

from PIL import Image, ImageDraw


def create_icon(size: int = 256) -> Image.Image:
    """Create a sun over two linked screens."""
    img = Image.new('RGBA', (size, size), (0, 0, 0, 0))
    draw = ImageDraw.Draw(img)

    accent = (255, 176, 0, 255)
    screen_color = (80, 80, 80, 255)
    frame_color = (26, 26, 26, 255)

    pad = size // 10

    # Two overlapping screens, the front one is the source
    back_screen = [pad + size // 5, pad + size // 6, size - pad, int(size * 0.62)]
    front_screen = [pad, int(size * 0.36), int(size * 0.7), int(size * 0.85)]
    for box in (back_screen, front_screen):
        draw.rounded_rectangle(box, radius=size // 20, fill=frame_color)
        inner = [box[0] + size // 30, box[1] + size // 30, box[2] - size // 30, box[3] - size // 30]
        draw.rounded_rectangle(inner, radius=size // 40, fill=screen_color)

    # Sun in the front screen
    cx = (front_screen[0] + front_screen[2]) // 2
    cy = (front_screen[1] + front_screen[3]) // 2
    radius = size // 10
    draw.ellipse([cx - radius, cy - radius, cx + radius, cy + radius], fill=accent)

    ray_inner = radius * 1.4
    ray_outer = radius * 1.9
    width = max(1, size // 40)
    for i in range(8):
        angle = i * math.pi / 4
        start = (cx + ray_inner * math.cos(angle), cy + ray_inner * math.sin(angle))
        end = (cx + ray_outer * math.cos(angle), cy + ray_outer * math.sin(angle))
        draw.line([start, end], fill=accent, width=width)

    return img


def save_icons(directory: Path, sizes=(16, 32, 48, 64, 128, 256)):
    """Write icon.png and icon_<size>.png files into directory."""
    directory.mkdir(parents=True, exist_ok=True)
    create_icon(256).save(directory / "icon.png")
    for size in sizes:
        create_icon(size).save(directory / f"icon_{size}.png")


if __name__ == "__main__":
    target = Path(sys.argv[1]) if len(sys.argv) > 1 else Path.cwd()
    save_icons(target)
    print(f"Icons written to {target}")
