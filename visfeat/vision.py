"""Image operations used by the feature tracker.

These cover corner detection, pyramidal Lucas-Kanade optical flow,
contrast-limited adaptive histogram equalisation and filled circles.
"""

from __future__ import annotations

import itertools

import numpy as np
from scipy import ndimage

__all__ = [
    "fill_circle",
    "good_features_to_track",
    "calc_optical_flow_lk",
    "equalize_clahe",
]

_PYR_KERNEL = np.array([1.0, 4.0, 6.0, 4.0, 1.0]) / 16.0
_LK_MAX_ITERATIONS = 30
_LK_EPSILON = 0.01
_LK_MIN_EIG = 1e-4
_DET_EPSILON = float(np.finfo(np.float32).eps)
_HIST_SIZE = 256


def _as_gray(image) -> np.ndarray:
    img = np.asarray(image, dtype=np.float64)
    if img.ndim != 2:
        raise ValueError("expected a single-channel image")
    return img


def fill_circle(image, center, radius, value):
    """Fill a disc of ``radius`` pixels around ``center`` (x, y) in place.

    The centre is rounded to the nearest pixel. Returns ``image``.
    """
    if not isinstance(image, np.ndarray):
        raise TypeError("image must be a numpy array")
    r = int(radius)
    if r < 0:
        raise ValueError("radius must not be negative")
    cx = int(round(float(center[0])))
    cy = int(round(float(center[1])))
    h, w = image.shape[:2]
    y0, y1 = max(cy - r, 0), min(cy + r + 1, h)
    x0, x1 = max(cx - r, 0), min(cx + r + 1, w)
    if y0 >= y1 or x0 >= x1:
        return image
    yy, xx = np.ogrid[y0:y1, x0:x1]
    inside = (xx - cx) ** 2 + (yy - cy) ** 2 <= r * r
    region = image[y0:y1, x0:x1]
    region[inside] = value
    return image


def good_features_to_track(image, max_corners, quality_level=0.01, min_distance=0.0, mask=None):
    """Detect Shi-Tomasi corners.

    Returns an ``(N, 2)`` float32 array of ``(x, y)`` positions, strongest
    first. ``max_corners <= 0`` means no limit. Pixels where ``mask`` is
    zero are never chosen.
    """
    img = _as_gray(image)
    if quality_level <= 0:
        raise ValueError("quality_level must be positive")
    if mask is not None:
        mask = np.asarray(mask)
        if mask.shape != img.shape:
            raise ValueError("mask size differs from the image size")
        allowed = mask != 0
    else:
        allowed = np.ones(img.shape, dtype=bool)

    gx = ndimage.sobel(img, axis=1, mode="mirror")
    gy = ndimage.sobel(img, axis=0, mode="mirror")
    a = ndimage.uniform_filter(gx * gx, size=3, mode="mirror")
    b = ndimage.uniform_filter(gx * gy, size=3, mode="mirror")
    c = ndimage.uniform_filter(gy * gy, size=3, mode="mirror")
    eig = 0.5 * (a + c) - np.sqrt(0.25 * (a - c) ** 2 + b * b)

    empty = np.zeros((0, 2), dtype=np.float32)
    if not allowed.any():
        return empty
    max_val = float(eig[allowed].max())
    if max_val <= 0:
        return empty
    eig = np.where(eig > max_val * quality_level, eig, 0.0)
    dilated = ndimage.grey_dilation(eig, size=(3, 3), mode="constant", cval=0.0)

    candidates = (eig != 0) & (eig == dilated) & allowed
    candidates[0, :] = candidates[-1, :] = False
    candidates[:, 0] = candidates[:, -1] = False
    ys, xs = np.nonzero(candidates)
    if len(ys) == 0:
        return empty
    values = eig[ys, xs]
    linear = ys * img.shape[1] + xs
    order = np.lexsort((-linear, -values))

    limit = int(max_corners) if max_corners > 0 else len(order)
    min_sq = float(min_distance) ** 2
    accepted: list[tuple[float, float]] = []
    for k in order:
        pt = (float(xs[k]), float(ys[k]))
        if min_distance >= 1 and accepted:
            arr = np.asarray(accepted)
            d2 = (arr[:, 0] - pt[0]) ** 2 + (arr[:, 1] - pt[1]) ** 2
            if (d2 < min_sq).any():
                continue
        accepted.append(pt)
        if len(accepted) >= limit:
            break
    return np.asarray(accepted, dtype=np.float32).reshape(-1, 2)


def _pyr_down(img: np.ndarray) -> np.ndarray:
    blurred = ndimage.convolve1d(img, _PYR_KERNEL, axis=0, mode="mirror")
    blurred = ndimage.convolve1d(blurred, _PYR_KERNEL, axis=1, mode="mirror")
    return blurred[::2, ::2]


def _pyramid(img: np.ndarray, max_level: int, win_w: int, win_h: int) -> list[np.ndarray]:
    levels = [img]
    while len(levels) <= max_level:
        nxt = _pyr_down(levels[-1])
        if nxt.shape[1] <= win_w or nxt.shape[0] <= win_h:
            break
        levels.append(nxt)
    return levels


def _sample(img: np.ndarray, rows: np.ndarray, cols: np.ndarray) -> np.ndarray:
    coords = [rows.ravel(), cols.ravel()]
    return ndimage.map_coordinates(img, coords, order=1, mode="nearest").reshape(rows.shape)


def _outside(pt, half, win, shape) -> bool:
    corner_x = np.floor(pt[0] - half[0])
    corner_y = np.floor(pt[1] - half[1])
    return bool(
        corner_x < -win[0] or corner_x >= shape[1] or corner_y < -win[1] or corner_y >= shape[0]
    )


def calc_optical_flow_lk(prev_img, next_img, prev_pts, win_size=(21, 21), max_level=3, initial_pts=None):
    """Track points from ``prev_img`` to ``next_img`` with pyramidal Lucas-Kanade.

    ``win_size`` is ``(width, height)``. ``initial_pts`` optionally seeds the
    search. Returns ``(next_pts, status)``: an ``(N, 2)`` float32 array and
    a uint8 array that is 1 where the point was tracked.
    """
    prev = _as_gray(prev_img)
    nxt = _as_gray(next_img)
    if prev.shape != nxt.shape:
        raise ValueError("images differ in size")
    pts = np.asarray(prev_pts, dtype=np.float64).reshape(-1, 2)
    if initial_pts is not None:
        guess = np.asarray(initial_pts, dtype=np.float64).reshape(-1, 2)
        if guess.shape != pts.shape:
            raise ValueError("initial points differ in count from the previous points")
    else:
        guess = None

    win_w, win_h = (int(s) for s in win_size)
    half_w, half_h = (win_w - 1) // 2, (win_h - 1) // 2
    half = ((win_w - 1) * 0.5, (win_h - 1) * 0.5)
    dy, dx = np.mgrid[-half_h : half_h + 1, -half_w : half_w + 1].astype(np.float64)
    area = float(dx.size)

    prev_pyr = _pyramid(prev, max(int(max_level), 0), win_w, win_h)
    next_pyr = _pyramid(nxt, max(int(max_level), 0), win_w, win_h)
    top = min(len(prev_pyr), len(next_pyr)) - 1
    grads = [np.gradient(level) for level in prev_pyr[: top + 1]]

    next_pts = np.zeros_like(pts)
    status = np.ones(len(pts), dtype=np.uint8)

    for k, p in enumerate(pts):
        ok = True
        if guess is not None:
            g = (guess[k] - p) / (2.0**top)
        else:
            g = np.zeros(2)
        for level in range(top, -1, -1):
            pl = p / (2.0**level)
            img_i, img_j = prev_pyr[level], next_pyr[level]
            grad_y, grad_x = grads[level]
            if _outside(pl, half, (win_w, win_h), img_i.shape):
                if level == 0:
                    ok = False
                else:
                    g = g * 2.0
                continue
            rows = pl[1] + dy
            cols = pl[0] + dx
            patch_i = _sample(img_i, rows, cols)
            ix = _sample(grad_x, rows, cols)
            iy = _sample(grad_y, rows, cols)
            a11 = float((ix * ix).sum())
            a12 = float((ix * iy).sum())
            a22 = float((iy * iy).sum())
            det = a11 * a22 - a12 * a12
            min_eig = (a11 + a22 - np.sqrt((a11 - a22) ** 2 + 4.0 * a12 * a12)) / (2.0 * area)
            if min_eig < _LK_MIN_EIG or det < _DET_EPSILON:
                if level == 0:
                    ok = False
                else:
                    g = g * 2.0
                continue
            for _ in range(_LK_MAX_ITERATIONS):
                if _outside(pl + g, half, (win_w, win_h), img_j.shape):
                    if level == 0:
                        ok = False
                    break
                patch_j = _sample(img_j, rows + g[1], cols + g[0])
                diff = patch_j - patch_i
                b1 = float((diff * ix).sum())
                b2 = float((diff * iy).sum())
                delta = np.array([(a12 * b2 - a22 * b1) / det, (a12 * b1 - a11 * b2) / det])
                g = g + delta
                if float(delta @ delta) <= _LK_EPSILON * _LK_EPSILON:
                    break
            if level > 0:
                g = g * 2.0
        next_pts[k] = p + g
        status[k] = 1 if ok else 0
    return next_pts.astype(np.float32), status


def _clip_histogram(hist: np.ndarray, limit: int) -> np.ndarray:
    excess = hist - limit
    clipped = int(excess[excess > 0].sum())
    hist = np.minimum(hist, limit)
    redist, residual = divmod(clipped, _HIST_SIZE)
    hist += redist
    if residual:
        step = max(_HIST_SIZE // residual, 1)
        hist[::step][:residual] += 1
    return hist


def _interp_axis(n: int, tile: int, count: int):
    f = np.arange(n, dtype=np.float64) / tile - 0.5
    i1 = np.floor(f).astype(np.intp)
    weight = f - i1
    i2 = np.minimum(i1 + 1, count - 1)
    i1 = np.maximum(i1, 0)
    return i1, i2, weight


def equalize_clahe(image, clip_limit=3.0, tile_grid=(8, 8)):
    """Contrast-limited adaptive histogram equalisation of an 8-bit image.

    ``tile_grid`` is ``(tiles_x, tiles_y)``. Raises ValueError for images
    that are not single-channel uint8.
    """
    src = np.asarray(image)
    if src.dtype != np.uint8 or src.ndim != 2:
        raise ValueError("CLAHE needs a single-channel uint8 image")
    tiles_x, tiles_y = (int(t) for t in tile_grid)
    if tiles_x <= 0 or tiles_y <= 0:
        raise ValueError("tile grid must be positive")
    h, w = src.shape
    pad_y, pad_x = (-h) % tiles_y, (-w) % tiles_x
    padded = np.pad(src, ((0, pad_y), (0, pad_x)), mode="reflect") if (pad_x or pad_y) else src

    tile_h = padded.shape[0] // tiles_y
    tile_w = padded.shape[1] // tiles_x
    area = tile_h * tile_w
    limit = max(int(clip_limit * area / _HIST_SIZE), 1) if clip_limit > 0 else 0
    scale = 255.0 / area

    luts = np.empty((tiles_y, tiles_x, _HIST_SIZE), dtype=np.float64)
    for ty, tx in itertools.product(range(tiles_y), range(tiles_x)):
        tile = padded[ty * tile_h : (ty + 1) * tile_h, tx * tile_w : (tx + 1) * tile_w]
        hist = np.bincount(tile.ravel(), minlength=_HIST_SIZE).astype(np.int64)
        if limit > 0:
            hist = _clip_histogram(hist, limit)
        luts[ty, tx] = np.clip(np.rint(np.cumsum(hist) * scale), 0, 255)

    y1, y2, ya = _interp_axis(h, tile_h, tiles_y)
    x1, x2, xa = _interp_axis(w, tile_w, tiles_x)
    vals = src.astype(np.intp)
    r1, r2 = y1[:, None], y2[:, None]
    c1, c2 = x1[None, :], x2[None, :]
    xa, ya = xa[None, :], ya[:, None]
    top = luts[r1, c1, vals] * (1.0 - xa) + luts[r1, c2, vals] * xa
    bottom = luts[r2, c1, vals] * (1.0 - xa) + luts[r2, c2, vals] * xa
    result = top * (1.0 - ya) + bottom * ya
    return np.clip(np.rint(result), 0, 255).astype(np.uint8)