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
In-memory RGB raster images and the binary PPM (P6) reader/writer used by the benchmarks.
"""

import os

import numpy as np

PPM_MAGIC = b"P6"
MAX_COLOR = 255
CHANNELS = 3
# Header tokens are short decimal numbers, anything longer is not a PPM header;
MAX_TOKEN_LENGTH = 20


class RasterFormatError(ValueError):
    """
    Raised when a file is not a P6 raster with 8-bit channels, or its payload is truncated;
    """
    pass


class RasterImage:
    """
    Fixed-size RGB image stored as a flat buffer of 8-bit samples, row-major and interleaved (RGBRGB...);
    :param width: number of columns, a positive integer
    :param height: number of rows, a positive integer
    :param pixels: optional buffer of 3 * width * height samples. If missing, the image is black
    """

    def __init__(self, width: int, height: int, pixels: np.ndarray = None):
        if width <= 0 or height <= 0:
            raise ValueError(f"image size must be positive, got {width}x{height}")
        self.width = int(width)
        self.height = int(height)
        if pixels is None:
            pixels = np.zeros(CHANNELS * self.width * self.height, dtype=np.uint8)
        else:
            pixels = np.ascontiguousarray(pixels, dtype=np.uint8)
            if pixels.ndim != 1:
                raise ValueError(f"pixel buffer must be flat, got shape {pixels.shape}")
            if len(pixels) != CHANNELS * self.width * self.height:
                raise ValueError(f"pixel buffer holds {len(pixels)} samples, "
                                 f"expected {CHANNELS * self.width * self.height} for a {self.width}x{self.height} image")
        self.pixels = pixels

    @staticmethod
    def from_array(array: np.ndarray) -> "RasterImage":
        """
        Build an image from a (height, width, 3) array;
        """
        array = np.asarray(array)
        if array.ndim != 3 or array.shape[2] != CHANNELS:
            raise ValueError(f"expected an array of shape (height, width, {CHANNELS}), got {array.shape}")
        return RasterImage(array.shape[1], array.shape[0], array.astype(np.uint8).reshape(-1))

    def index(self, x: int, y: int, channel: int = 0) -> int:
        if not (0 <= x < self.width and 0 <= y < self.height and 0 <= channel < CHANNELS):
            raise IndexError(f"pixel ({x}, {y}, {channel}) is outside a {self.width}x{self.height} image")
        return CHANNELS * (y * self.width + x) + channel

    def get_pixel(self, x: int, y: int) -> tuple:
        i = self.index(x, y)
        return tuple(int(v) for v in self.pixels[i:i + CHANNELS])

    def set_pixel(self, x: int, y: int, rgb: tuple) -> None:
        i = self.index(x, y)
        self.pixels[i:i + CHANNELS] = rgb

    def as_array(self) -> np.ndarray:
        # View, writes go through to the flat buffer;
        return self.pixels.reshape(self.height, self.width, CHANNELS)

    def copy(self) -> "RasterImage":
        return RasterImage(self.width, self.height, self.pixels.copy())

    def blank_like(self) -> "RasterImage":
        return RasterImage(self.width, self.height)

    @property
    def size(self) -> int:
        return len(self.pixels)

    def __eq__(self, other) -> bool:
        if not isinstance(other, RasterImage):
            return NotImplemented
        return self.width == other.width and self.height == other.height and np.array_equal(self.pixels, other.pixels)

    def __repr__(self) -> str:
        return f"RasterImage(width={self.width}, height={self.height})"


def _read_token(f) -> bytes:
    # Skip leading whitespace, then read until the next whitespace byte (which is consumed);
    c = f.read(1)
    while c and c.isspace():
        c = f.read(1)
    token = bytearray()
    while c and not c.isspace():
        if len(token) >= MAX_TOKEN_LENGTH:
            raise RasterFormatError(f"malformed header: token longer than {MAX_TOKEN_LENGTH} bytes")
        token += c
        c = f.read(1)
    return bytes(token)


def read_ppm(path: str) -> RasterImage:
    """
    Load a binary PPM file: a "P6 <width> <height> 255" header followed by width * height * 3 raw bytes;
    :param path: path to the input file
    :return: the loaded image
    """
    with open(path, "rb") as f:
        magic = _read_token(f)
        if magic != PPM_MAGIC:
            raise RasterFormatError(f"unsupported image format in {path}: expected {PPM_MAGIC.decode()}, found {magic!r}")
        try:
            width = int(_read_token(f))
            height = int(_read_token(f))
            max_color = int(_read_token(f))
        except ValueError as e:
            raise RasterFormatError(f"malformed header in {path}: {e}") from e
        if width <= 0 or height <= 0:
            raise RasterFormatError(f"invalid image size in {path}: {width}x{height}")
        if max_color != MAX_COLOR:
            raise RasterFormatError(f"unsupported max color value in {path}: {max_color}, expected {MAX_COLOR}")
        num_bytes = CHANNELS * width * height
        available = os.fstat(f.fileno()).st_size - f.tell()
        if available < num_bytes:
            raise RasterFormatError(f"truncated pixel data in {path}: found {available} bytes, expected {num_bytes}")
        data = f.read(num_bytes)
    if len(data) != num_bytes:
        raise RasterFormatError(f"truncated pixel data in {path}: read {len(data)} bytes, expected {num_bytes}")
    return RasterImage(width, height, np.frombuffer(data, dtype=np.uint8).copy())


def write_ppm(path: str, image: RasterImage) -> None:
    with open(path, "wb") as f:
        f.write(f"P6\n{image.width} {image.height}\n{MAX_COLOR}\n".encode("ascii"))
        f.write(image.pixels.tobytes())
