from __future__ import annotations

import math

import numpy as np

# Ken Perlin's reference permutation, doubled to avoid index wrapping.
_PERMUTATION = np.array(
    [
        151, 160, 137, 91, 90, 15, 131, 13, 201, 95, 96, 53, 194, 233, 7, 225, 140, 36, 103, 30, 69, 142,
        8, 99, 37, 240, 21, 10, 23, 190, 6, 148, 247, 120, 234, 75, 0, 26, 197, 62, 94, 252, 219, 203, 117,
        35, 11, 32, 57, 177, 33, 88, 237, 149, 56, 87, 174, 20, 125, 136, 171, 168, 68, 175, 74, 165, 71,
        134, 139, 48, 27, 166, 77, 146, 158, 231, 83, 111, 229, 122, 60, 211, 133, 230, 220, 105, 92, 41,
        55, 46, 245, 40, 244, 102, 143, 54, 65, 25, 63, 161, 1, 216, 80, 73, 209, 76, 132, 187, 208, 89,
        18, 169, 200, 196, 135, 130, 116, 188, 159, 86, 164, 100, 109, 198, 173, 186, 3, 64, 52, 217, 226,
        250, 124, 123, 5, 202, 38, 147, 118, 126, 255, 82, 85, 212, 207, 206, 59, 227, 47, 16, 58, 17, 182,
        189, 28, 42, 223, 183, 170, 213, 119, 248, 152, 2, 44, 154, 163, 70, 221, 153, 101, 155, 167, 43,
        172, 9, 129, 22, 39, 253, 19, 98, 108, 110, 79, 113, 224, 232, 178, 185, 112, 104, 218, 246, 97,
        228, 251, 34, 242, 193, 238, 210, 144, 12, 191, 179, 162, 241, 81, 51, 145, 235, 249, 14, 239,
        107, 49, 192, 214, 31, 181, 199, 106, 157, 184, 84, 204, 176, 115, 121, 50, 45, 127, 4, 150, 254,
        138, 236, 205, 93, 222, 114, 67, 29, 24, 72, 243, 141, 128, 195, 78, 66, 215, 61, 156, 180,
    ],
    dtype=np.int64,
)
PERM: np.ndarray = np.concatenate([_PERMUTATION, _PERMUTATION])


def _fade(t: float) -> float:
    return t * t * t * (t * (t * 6 - 15) + 10)


def _lerp(t: float, a: float, b: float) -> float:
    return a + t * (b - a)


def _grad2(hash_value: int, x: float, y: float) -> float:
    h = hash_value & 3
    u = x if h < 2 else y
    v = y if h < 2 else x
    return (u if (h & 1) == 0 else -u) + (v if (h & 2) == 0 else -v)


def perlin2d(x: float, y: float) -> float:
    """Classic 2D gradient noise in roughly [-1, 1]."""
    fx = math.floor(x)
    fy = math.floor(y)
    xi = fx & 255
    yi = fy & 255
    xf = x - fx
    yf = y - fy
    u = _fade(xf)
    v = _fade(yf)

    aa = int(PERM[PERM[xi] + yi])
    ab = int(PERM[PERM[xi] + yi + 1])
    ba = int(PERM[PERM[xi + 1] + yi])
    bb = int(PERM[PERM[xi + 1] + yi + 1])

    return _lerp(
        v,
        _lerp(u, _grad2(aa, xf, yf), _grad2(ba, xf - 1, yf)),
        _lerp(u, _grad2(ab, xf, yf - 1), _grad2(bb, xf - 1, yf - 1)),
    )


def fbm2d(x: float, y: float, octaves: int, lacunarity: float, diminish: float) -> float:
    value = 0.0
    amplitude = 1.0
    frequency = 1.0
    max_amplitude = 0.0
    for _ in range(max(0, octaves)):
        sample_x = x * frequency
        sample_y = y * frequency
        if not (math.isfinite(sample_x) and math.isfinite(sample_y)):
            break
        value += perlin2d(sample_x, sample_y) * amplitude
        max_amplitude += amplitude
        amplitude *= diminish
        frequency *= lacunarity
    if max_amplitude == 0:
        return 0.0
    return value / max_amplitude


def voronoi2d(x: float, y: float) -> float:
    """Distance to the nearest hashed feature point, clamped to 1."""
    ix = math.floor(x)
    iy = math.floor(y)
    min_distance = 1e10

    for dy in (-1, 0, 1):
        for dx in (-1, 0, 1):
            cx = ix + dx
            cy = iy + dy
            h = int(PERM[(int(PERM[cx & 255]) + (cy & 255)) & 255])
            px = cx + h / 255
            py = cy + int(PERM[(h + 37) & 255]) / 255
            distance = math.hypot(x - px, y - py)
            if distance < min_distance:
                min_distance = distance
    return min(min_distance, 1.0)
