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

import math
import time

import numpy as np
from numba import config, cuda

from stencilbench.benchmark import Benchmark, time_phase, DEFAULT_BLOCK_SIZE_2D
from stencilbench.benchmark_result import BenchmarkResult
from stencilbench.raster import RasterImage
from stencilbench.stencil import StencilKernel, stencil_pixel

##############################
##############################

NUM_THREADS_PER_BLOCK = 256

# Same per-pixel reduction used on the CPU, compiled for the device;
stencil_pixel_gpu = cuda.jit(device=True)(stencil_pixel)


@cuda.jit
def stencil(image, result, width, height, filter_id, gx, gy):
    # One thread per pixel, threads on the border exit without writing;
    x, y = cuda.grid(2)
    if x < 1 or y < 1 or x >= width - 1 or y >= height - 1:
        return
    stencil_pixel_gpu(image, result, width, x, y, filter_id, gx, gy)


@cuda.jit
def reset(x, n):
    for i in range(cuda.grid(1), n, cuda.gridsize(1)):
        x[i] = 0


def free_device_memory() -> None:
    # numba releases device arrays lazily, flush the pending deallocations now.
    # The simulator keeps device arrays in host memory, there is nothing to flush;
    if not config.ENABLE_CUDASIM:
        cuda.current_context().deallocations.clear()


class GpuUnavailableError(RuntimeError):
    """
    Raised when the GPU strategy is requested but no CUDA device can be used;
    """
    pass


class GpuParallelBenchmark(Benchmark):
    """
    Apply the stencil on a CUDA GPU, with a 2D grid of thread blocks that assigns one thread to each pixel.
    Threads are independent, and never synchronize among themselves.

    The measured computation includes the whole round trip:
    ALLOC(image, result) ─> COPY(image, host->device) ─> RESET(result) ─> STENCIL(image, result) ─> SYNC ─> COPY(result, device->host) ─> FREE
    :param block_size_2d: number of threads per side of each square thread block
    """

    def __init__(self, benchmark: BenchmarkResult, block_size_2d: int = DEFAULT_BLOCK_SIZE_2D):
        super().__init__("gpu", benchmark)
        if block_size_2d < 1:
            raise ValueError(f"the block size must be positive, got {block_size_2d}")
        self.block_size_2d = block_size_2d
        self.num_blocks = (0, 0)

    @property
    def config_key(self) -> str:
        return f"{self.block_size_2d}x{self.block_size_2d}"

    @time_phase("allocation")
    def alloc(self, image: RasterImage, kernel: StencilKernel) -> None:
        if not cuda.is_available():
            raise GpuUnavailableError("no CUDA device is available for the gpu strategy")
        self.num_blocks = (math.ceil(image.width / self.block_size_2d), math.ceil(image.height / self.block_size_2d))

        # Build the kernels, compiling them on a dummy image;
        dummy = np.zeros(27, dtype=np.uint8)
        d_dummy = cuda.to_device(dummy)
        d_dummy_result = cuda.to_device(dummy)
        d_gx = cuda.to_device(kernel.gx)
        d_gy = cuda.to_device(kernel.gy)
        reset[1, 32](d_dummy_result, len(dummy))
        stencil[(1, 1), (self.block_size_2d, self.block_size_2d)](d_dummy, d_dummy_result, 3, 3, kernel.filter_id, d_gx, d_gy)
        cuda.synchronize()

    def execute(self) -> RasterImage:
        block = (self.block_size_2d, self.block_size_2d)
        start_comp = time.perf_counter()

        # Allocate the device buffers, and copy the input image and the weights;
        d_image = self.execute_phase("copy_to_device", cuda.to_device, self.input.pixels)
        d_gx = cuda.to_device(self.kernel.gx)
        d_gy = cuda.to_device(self.kernel.gy)
        d_result = cuda.device_array(self.output.size, dtype=np.uint8)

        # Border pixels are never written, so they must start from zero;
        self.execute_phase("reset", reset[math.ceil(self.output.size / NUM_THREADS_PER_BLOCK), NUM_THREADS_PER_BLOCK],
                           d_result, self.output.size)
        self.execute_phase("stencil", stencil[self.num_blocks, block],
                           d_image, d_result, self.input.width, self.input.height, self.kernel.filter_id, d_gx, d_gy)

        # Add a sync step to measure the real computation time;
        self.execute_phase("sync", cuda.synchronize)
        self.execute_phase("copy_to_host", d_result.copy_to_host, self.output.pixels)

        # Release the device buffers inside the measured time;
        del d_image, d_result, d_gx, d_gy
        self.execute_phase("free", free_device_memory)
        end = time.perf_counter()
        self.benchmark.add_computation_time(end - start_comp)

        num_tasks = self.num_blocks[0] * self.num_blocks[1] * self.block_size_2d ** 2
        self.benchmark.add_workers(self.name, num_tasks)
        if self.benchmark.debug:
            BenchmarkResult.log_message(f"\tgpu grid: {self.num_blocks[0]}x{self.num_blocks[1]} blocks of "
                                        f"{self.block_size_2d}x{self.block_size_2d} threads, result: ["
                                        + ", ".join(str(x) for x in self.output.pixels[:10]) + "...]")
        return self.output
