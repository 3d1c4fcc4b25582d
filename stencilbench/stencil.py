# Copyright (c) 2020, 2021, NECSTLab, Politecnico di Milano. All rights reserved.

# Redistribution and use in source and binary forms, with or without
# modification, are permitted provided that the following conditions
# are met:
#  * Redistributions of source code must retain the above copyright
#    notice, this list of conditions and the following disclaimer.
#  * Redistributions in binary form must reproduce the above copyright
#    notice, this list of conditions and the following disclaimer in the
#    documentation and/or other materials provided with the distribution.
#  * Neither the name of NECSTLab nor the names of its
#    contributors may be used to endorse or promote products derived
#    from this software without specific prior written permission.
#  * Neither the name of Politecnico di Milano nor the names of its
#    contributors may be used to endorse or promote products derived
#    from this software without specific prior written permission.

# THIS SOFTWARE IS PROVIDED BY THE COPYRIGHT HOLDERS ``AS IS'' AND ANY
# EXPRESS OR IMPLIED WARRANTIES, INCLUDING, BUT NOT LIMITED TO, THE
# IMPLIED WARRANTIES OF MERCHANTABILITY AND FITNESS FOR A PARTICULAR
# PURPOSE ARE DISCLAIMED.  IN NO EVENT SHALL THE COPYRIGHT OWNER OR
# CONTRIBUTORS BE LIABLE FOR ANY DIRECT, INDIRECT, INCIDENTAL, SPECIAL,
# EXEMPLARY, OR CONSEQUENTIAL DAMAGES (INCLUDING, BUT NOT LIMITED TO,
# PROCUREMENT OF SUBSTITUTE GOODS OR SERVICES; LOSS OF USE, DATA, OR
# PROFITS; OR BUSINESS INTERRUPTION) HOWEVER CAUSED AND ON ANY THEORY
# OF LIABILITY, WHETHER IN CONTRACT, STRICT LIABILITY, OR TORT
# (INCLUDING NEGLIGENCE OR OTHERWISE) ARISING IN ANY WAY OUT OF THE USE
# OF THIS SOFTWARE, EVEN IF ADVISED OF THE POSSIBILITY OF SUCH DAMAGE.

"""
3x3 stencil filters shared by every execution strategy.

The per-pixel reduction is written once, as plain Python in `stencil_pixel`.
The CPU strategies use it through numba's nopython mode, the GPU strategy compiles
the very same function as a CUDA device function, so weights and reduction order can't drift.
"""

import math
from enum import IntEnum

import numba
import numpy as np

from stencilbench.raster import RasterImage, CHANNELS

##############################
##############################


class FilterType(IntEnum):
    BLUR = 1
    EDGE_DETECTION = 2


# Plain integers, numba freezes them as compile-time constants;
BLUR_ID = int(FilterType.BLUR)
EDGE_DETECTION_ID = int(FilterType.EDGE_DETECTION)

STENCIL_DIAMETER = 3
STENCIL_RADIUS = STENCIL_DIAMETER // 2
BLUR_NORMALIZATION = STENCIL_DIAMETER * STENCIL_DIAMETER


def _read_only(array: np.ndarray) -> np.ndarray:
    array.setflags(write=False)
    return array


SOBEL_X = _read_only(np.array([[-1, 0, 1], [-2, 0, 2], [-1, 0, 1]], dtype=np.int32))
SOBEL_Y = _read_only(np.array([[-1, -2, -1], [0, 0, 0], [1, 2, 1]], dtype=np.int32))

FILTER_NAMES = {
    FilterType.BLUR: "blur",
    FilterType.EDGE_DETECTION: "edge_detection",
}

##############################
##############################


class StencilKernel:
    """
    Immutable description of a filter: its tag, plus the horizontal and vertical gradient weights.
    Blur ignores the weights, but they are always present so that every strategy passes the same arguments;
    :param filter_type: the filter applied by this kernel
    """

    __slots__ = ("filter_type", "gx", "gy")

    def __init__(self, filter_type: FilterType):
        object.__setattr__(self, "filter_type", FilterType(filter_type))
        object.__setattr__(self, "gx", SOBEL_X)
        object.__setattr__(self, "gy", SOBEL_Y)

    def __setattr__(self, key, value):
        raise AttributeError(f"{type(self).__name__} is immutable")

    @staticmethod
    def from_selector(selector: int) -> "StencilKernel":
        """
        Map the numeric filter selector used on the command line (1 = blur, 2 = edge detection) to a kernel;
        """
        try:
            return StencilKernel(FilterType(int(selector)))
        except ValueError:
            raise ValueError(f"unknown filter selector {selector}, "
                             f"valid values are {[int(f) for f in FilterType]}") from None

    @property
    def filter_id(self) -> int:
        return int(self.filter_type)

    @property
    def name(self) -> str:
        return FILTER_NAMES[self.filter_type]

    def __eq__(self, other) -> bool:
        return isinstance(other, StencilKernel) and self.filter_type == other.filter_type

    def __hash__(self) -> int:
        return hash(self.filter_type)

    def __repr__(self) -> str:
        return f"StencilKernel({self.filter_type.name})"


def stencil_pixel(src, dst, width, x, y, filter_id, gx, gy):
    """
    Compute the 3 channels of the interior pixel (x, y) from its 3x3 neighbourhood in src, and store them in dst.
    Buffers are flat and interleaved. The caller guarantees that (x, y) is not on the image border;
    """
    out = CHANNELS * (y * width + x)
    for c in range(CHANNELS):
        if filter_id == BLUR_ID:
            total = 0
            for dy in range(-STENCIL_RADIUS, STENCIL_RADIUS + 1):
                for dx in range(-STENCIL_RADIUS, STENCIL_RADIUS + 1):
                    total += int(src[CHANNELS * ((y + dy) * width + (x + dx)) + c])
            dst[out + c] = total // BLUR_NORMALIZATION
        else:
            sum_gradient_x = 0
            sum_gradient_y = 0
            for dy in range(-STENCIL_RADIUS, STENCIL_RADIUS + 1):
                for dx in range(-STENCIL_RADIUS, STENCIL_RADIUS + 1):
                    neighbour = int(src[CHANNELS * ((y + dy) * width + (x + dx)) + c])
                    sum_gradient_x += neighbour * int(gx[dy + STENCIL_RADIUS, dx + STENCIL_RADIUS])
                    sum_gradient_y += neighbour * int(gy[dy + STENCIL_RADIUS, dx + STENCIL_RADIUS])
            magnitude = math.sqrt(sum_gradient_x * sum_gradient_x + sum_gradient_y * sum_gradient_y)
            # Saturate, then truncate to 8 bits;
            dst[out + c] = int(min(magnitude, 255.0))


stencil_pixel_cpu = numba.njit(nogil=True)(stencil_pixel)


@numba.njit(nogil=True)
def stencil_rows(src, dst, width, height, row_start, row_end, filter_id, gx, gy):
    """
    Apply the stencil to every interior pixel of rows [row_start, row_end). Border rows and columns are skipped;
    """
    for y in range(max(row_start, 1), min(row_end, height - 1)):
        for x in range(1, width - 1):
            stencil_pixel_cpu(src, dst, width, x, y, filter_id, gx, gy)


def apply_stencil(image: RasterImage, kernel: StencilKernel) -> RasterImage:
    """
    Interpreted reference implementation, it doesn't need numba compilation but is only practical on small images;
    :param image: input image, left untouched
    :param kernel: the filter to apply
    :return: a new image, with black borders
    """
    result = image.blank_like()
    for y in range(1, image.height - 1):
        for x in range(1, image.width - 1):
            stencil_pixel(image.pixels, result.pixels, image.width, x, y, kernel.filter_id, kernel.gx, kernel.gy)
    return result
